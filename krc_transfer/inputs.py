"""
Batch input files.

CSV (header row) and JSON (array of objects) files with one NFT transfer
per record:

    walletAddress,tick,id
    kaspa:qq...,KASPUNKS,42

``tokenId`` is accepted instead of ``id``.
"""
import csv
import io
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Union

from pydantic import ValidationError

from .exceptions import InputFileError
from .models import NftTransferRequest

logger = logging.getLogger(__name__)

ID_FIELDS = ("id", "tokenId")


def _present(value: Any) -> bool:
    return value is not None and value != ""


def validate_record(record: Any, index: int, prefix: str = "kaspa") -> Dict[str, str]:
    """
    Validate one record and normalize its identifier to ``token_id``.

    Raises:
        InputFileError: If the record is malformed
    """
    if not isinstance(record, dict):
        raise InputFileError(f"Invalid data format at index {index}: expected an object", index=index)

    wallet = record.get("walletAddress")
    tick = record.get("tick")
    token_id = next((record[f] for f in ID_FIELDS if _present(record.get(f))), None)
    if not _present(wallet) or not _present(tick) or token_id is None:
        raise InputFileError(
            f"Invalid data format at index {index}. Each entry must have walletAddress, tick, "
            f"and either id or tokenId field",
            index=index,
        )

    if not isinstance(wallet, str) or not wallet.startswith(f"{prefix}:"):
        raise InputFileError(f"Invalid Kaspa address format at index {index}: {wallet}", index=index)
    if not isinstance(tick, str):
        raise InputFileError(f"Invalid tick format at index {index}: {tick}", index=index)
    # bool is an int subclass but not a valid identifier
    if isinstance(token_id, bool) or not isinstance(token_id, (str, int, float)):
        raise InputFileError(f"Invalid ID format at index {index}: {token_id}", index=index)

    if isinstance(token_id, float) and token_id.is_integer():
        token_id = int(token_id)
    return {"walletAddress": wallet.strip(), "tick": tick.strip(), "token_id": str(token_id).strip()}


def parse_json(content: str) -> List[Any]:
    try:
        data = json.loads(content)
    except json.JSONDecodeError as e:
        raise InputFileError(f"Error processing JSON file: {e}")
    if not isinstance(data, list):
        raise InputFileError("Error processing JSON file: input data must be an array")
    return data


def parse_csv(content: str) -> List[Dict[str, str]]:
    reader = csv.DictReader(io.StringIO(content), skipinitialspace=True)
    records = []
    for row in reader:
        values = {(k or "").strip(): (v or "").strip() for k, v in row.items()}
        if not any(values.values()):
            continue
        records.append(values)
    return records


def load_transfer_file(path: Union[str, Path], prefix: str = "kaspa") -> List[NftTransferRequest]:
    """
    Load NFT transfer requests from a CSV or JSON file.

    Args:
        path: Input file; the extension selects the format
        prefix: Network address prefix every walletAddress must carry

    Returns:
        Requests in file order

    Raises:
        InputFileError: For unsupported formats, unreadable files or
            invalid records (``index`` names the record)
    """
    path = Path(path)
    extension = path.suffix.lower()
    if extension not in (".json", ".csv"):
        raise InputFileError("Unsupported file format. Please provide a CSV or JSON file.")

    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        raise InputFileError(f"Cannot read input file {path}: {e}")

    records = parse_json(content) if extension == ".json" else parse_csv(content)

    requests = []
    for index, record in enumerate(records):
        item = validate_record(record, index, prefix)
        try:
            requests.append(
                NftTransferRequest(ticker=item["tick"], token_id=item["token_id"], destination=item["walletAddress"])
            )
        except ValidationError as e:
            raise InputFileError(f"Invalid record at index {index}: {e}", index=index)

    logger.info(f"Loaded {len(requests)} transfer(s) from {path}")
    return requests
