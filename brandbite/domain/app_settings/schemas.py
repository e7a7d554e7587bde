from pydantic import BaseModel


class AppSettingUpdateRequest(BaseModel):
    key: str
    value: str | int


class AppSettingsResponse(BaseModel):
    settings: dict[str, str]
