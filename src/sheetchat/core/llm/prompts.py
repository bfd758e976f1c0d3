"""System prompt for chat turns."""

import json

from sheetchat.core.table_store import FileRecord

ANALYST_INSTRUCTIONS = (
    "You are a helpful data analysis assistant. Analyze the provided Excel/CSV files "
    "and answer questions about them. Use the spreadsheet tools to read and analyze "
    "the data; never guess values you have not retrieved. Always pass the file_id "
    "exactly as listed below. If a tool returns an error, correct the call or explain "
    "the problem to the user."
)


def file_info_block(files: list[FileRecord]) -> str:
    entries = [
        {
            "id": record.id,
            "filename": record.filename,
            "sheets": [
                {"name": sheet.name, "columns": sheet.schema(), "row_count": sheet.row_count}
                for sheet in record.sheets
            ],
        }
        for record in files
    ]
    return json.dumps(entries, ensure_ascii=False)


def build_system_prompt(files: list[FileRecord]) -> str:
    if not files:
        return ANALYST_INSTRUCTIONS + "\n\nNo files are attached to this conversation."
    return f"{ANALYST_INSTRUCTIONS}\n\nAttached files (resource:file-info):\n{file_info_block(files)}"
