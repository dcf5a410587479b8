"""HTTP-level clients for Airtable, the token proxy and the geocoder."""
