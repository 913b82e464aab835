from pydantic import BaseModel


class CoreModel(BaseModel):
    class Config:
        extra = "forbid"


class FrozenCoreModel(CoreModel):
    class Config(CoreModel.Config):
        frozen = True
