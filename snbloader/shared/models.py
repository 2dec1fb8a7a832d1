from pydantic import BaseModel, ConfigDict


class LoaderBaseModel(BaseModel):
    model_config = ConfigDict(
        extra="forbid",
        validate_assignment=True,
    )
