"""Pydantic models for the gateway's JSON contract.

Wire names are camelCase where the client expects them; attribute names stay
snake_case and are mapped with aliases.
"""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class _Wire(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class FieldDefinition(BaseModel):
    name: str
    label: str = ""
    type: Literal["text", "number", "date"] = "text"
    required: bool = True

    @property
    def display_label(self) -> str:
        return self.label or self.name


class ExtractedField(BaseModel):
    field_name: str
    extracted_value: str | None
    confidence: float = Field(ge=0.0, le=1.0)


class ExtractedRow(BaseModel):
    row_index: int
    fields: list[ExtractedField]


class FlatExtraction(_Wire):
    fields: list[ExtractedField]
    processing_time: int = Field(0, alias="processingTime")
    model: str = ""


class RowExtraction(_Wire):
    header_fields: list[ExtractedField] = Field(alias="headerFields")
    rows: list[ExtractedRow]
    total_workers: int = Field(alias="totalWorkers")
    processing_time: int = Field(0, alias="processingTime")
    model: str = ""


ExtractionResult = FlatExtraction | RowExtraction


class UpdateRequest(_Wire):
    row: int
    timestamp: str
    original_row: int | None = Field(alias="originalRow")
    requested_by: str = Field(alias="requestedBy")
    description: str
    status: str = "Pending"


# Request bodies. Every field is optional so that missing ones can be
# reported together with a single 400.


class ExtractRequest(_Wire):
    image: str | None = None
    mime_type: str | None = Field(None, alias="mimeType")
    field_definitions: list[FieldDefinition] | None = Field(None, alias="fieldDefinitions")
    worker_fields: list[FieldDefinition] | None = Field(None, alias="workerFields")


class AppendRequest(_Wire):
    data: dict[str, Any] | None = None
    header_data: dict[str, Any] | None = Field(None, alias="headerData")
    rows: list[dict[str, Any]] | None = None
    submitted_by: str | None = Field(None, alias="submittedBy")
    upload_id: str | None = Field(None, alias="uploadId")
    file_name: str | None = Field(None, alias="fileName")


class UpdateRequestCreate(_Wire):
    original_row_number: int | None = Field(None, alias="originalRowNumber")
    requested_by: str | None = Field(None, alias="requestedBy")
    description: str | None = None


# Response payloads


class AppendResult(_Wire):
    row_number: int | None = Field(alias="rowNumber")
    sheet_url: str = Field(alias="sheetUrl")


class RecordsResult(_Wire):
    headers: list[str]
    rows: list[list[str]]
    total_rows: int = Field(alias="totalRows")


class DailyCount(BaseModel):
    date: str
    count: int


class UserCount(BaseModel):
    user: str
    count: int


class SummaryResult(_Wire):
    total_records: int = Field(alias="totalRecords")
    today_count: int = Field(alias="todayCount")
    approved_count: int = Field(alias="approvedCount")
    rejected_count: int = Field(alias="rejectedCount")
    approval_rate: int = Field(alias="approvalRate")
    submissions_by_day: list[DailyCount] = Field(alias="submissionsByDay")
    submissions_by_user: list[UserCount] = Field(alias="submissionsByUser")
    pending_update_requests: int = Field(alias="pendingUpdateRequests")


class HealthResponse(_Wire):
    status: str = "ok"
    has_anthropic_key: bool = Field(alias="hasAnthropicKey")
    has_sheet_id: bool = Field(alias="hasSheetId")
    has_service_account: bool = Field(alias="hasServiceAccount")
