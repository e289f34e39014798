"""Services for job tracking, source resolution and render supervision."""
