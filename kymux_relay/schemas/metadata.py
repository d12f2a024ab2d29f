from pydantic import BaseModel, Field

PTS_MASK = 0x3FFFFFFFFFFFFFFF


class MetaHeader(BaseModel):
    pts: int = Field(ge=0, le=PTS_MASK)
    is_config: bool = False
    is_key_frame: bool = False
    payload_size: int = Field(ge=0, le=0xFFFFFFFF)

    model_config = {
        "frozen": True
    }
