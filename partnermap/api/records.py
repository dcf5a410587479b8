"""
Low-level record access for the Airtable REST API.

Responsible for:
- Listing records of the partner table, following pagination
- Creating, patching and deleting single records

All functions raise ApiResponseError for non-2xx answers; translating
records to partners is the repository's job.
"""
import logging

from partnermap.requests import make_request

_LOGGER = logging.getLogger(__name__)


def table_url(api_url: str, base_id: str, table_name: str) -> str:
    return f"{api_url}/{base_id}/{table_name}"


async def fetch_records(url: str, headers: dict, max_records: int | None = None) -> list[dict]:
    """
    Fetch all records of the table at url.

    Airtable returns at most 100 records per page and an "offset" token
    while more pages remain.

    Corresponding CURL command:
    curl -H 'Authorization: Bearer TOKEN' 'https://api.airtable.com/v0/BASE/Partners?maxRecords=N'
    """
    records: list[dict] = []
    params: dict = {}
    if max_records is not None:
        params["maxRecords"] = max_records

    while True:
        raw_json = await make_request("GET", url, headers, params=dict(params))
        page = (raw_json or {}).get("records", [])
        records.extend(page)
        offset = (raw_json or {}).get("offset")
        if not offset or (max_records is not None and len(records) >= max_records):
            break
        params["offset"] = offset
        _LOGGER.debug("Fetched %s records so far, following offset", len(records))

    return records


async def create_record(url: str, headers: dict, fields: dict) -> dict:
    """
    Create a record and return the created record JSON ({"id", "fields", "createdTime"}).

    Corresponding CURL command:
    curl -X 'POST' 'https://api.airtable.com/v0/BASE/Partners' -d '{"fields": {...}}'
    """
    return await make_request(
        "POST", url, {**headers, "Content-Type": "application/json"}, payload={"fields": fields}
    )


async def update_record(url: str, headers: dict, record_id: str, fields: dict) -> dict:
    """
    Patch only the given fields of a record; fields not sent keep their stored values.

    Corresponding CURL command:
    curl -X 'PATCH' 'https://api.airtable.com/v0/BASE/Partners/RECORD' -d '{"fields": {...}}'
    """
    return await make_request(
        "PATCH", f"{url}/{record_id}", {**headers, "Content-Type": "application/json"}, payload={"fields": fields}
    )


async def delete_record(url: str, headers: dict, record_id: str) -> dict:
    """
    Delete a record. Airtable answers {"id": ..., "deleted": true}.

    Corresponding CURL command:
    curl -X 'DELETE' 'https://api.airtable.com/v0/BASE/Partners/RECORD'
    """
    return await make_request("DELETE", f"{url}/{record_id}", headers)
