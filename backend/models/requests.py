from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class _Body(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CheckNameRequest(_Body):
    name: str = ""


class CreateVoiceRoomRequest(_Body):
    room_id: str


class VoiceTokenRequest(_Body):
    participant_name: str
    participant_id: str


class VoiceRoomResponse(_Body):
    name: str
    url: str
