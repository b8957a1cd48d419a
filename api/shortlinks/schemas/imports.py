from pydantic import BaseModel, ConfigDict, Field


class LinkMapping(BaseModel):
    """Source column names for each link field of a CSV import."""

    link: str = Field(min_length=1)
    url: str = Field(min_length=1)
    title: str | None = None
    description: str | None = None
    tags: str | None = None
    created_at: str | None = Field(default=None, alias="createdAt")

    model_config = ConfigDict(populate_by_name=True)


class CsvImportPayload(BaseModel):
    id: str = Field(min_length=1)
    workspace_id: str = Field(alias="workspaceId", min_length=1)
    user_id: str = Field(alias="userId", min_length=1)
    folder_id: str | None = Field(alias="folderId")
    url: str = Field(min_length=1)
    mapping: LinkMapping

    model_config = ConfigDict(populate_by_name=True)

    def to_message(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)
