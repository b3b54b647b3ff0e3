"""Lead storage: field metadata, EAV values, ownership locks, pipeline stages."""
