"""HTTP/JSON API over the CRM data layer and the job queue."""
