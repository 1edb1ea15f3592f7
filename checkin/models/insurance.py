import json

from pydantic import BaseModel


class InsuranceCreate(BaseModel):
    patient_id: int
    provider: str
    policy_number: str
    group_number: str | None = None
    subscriber_name: str
    # JSON-encoded list of stored upload names
    card_image_path: str | None = None


class InsuranceUpdate(BaseModel):
    provider: str | None = None
    policy_number: str | None = None
    group_number: str | None = None
    subscriber_name: str | None = None
    card_image_path: str | None = None


class Insurance(InsuranceCreate):
    id: int
    created_at: str

    @property
    def card_images(self) -> list[str]:
        return decode_card_images(self.card_image_path)


def encode_card_images(names: list[str]) -> str | None:
    return json.dumps(names) if names else None


def decode_card_images(value: str | None) -> list[str]:
    if not value:
        return []
    try:
        decoded = json.loads(value)
    except json.JSONDecodeError:
        return [value]
    if isinstance(decoded, list):
        return [str(item) for item in decoded]
    return [str(decoded)]
