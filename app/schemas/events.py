"""
Identity provider webhook events.

Each event type is its own model tagged by `type`; the union is resolved on
that tag before any handler runs.
"""
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter


class PhoneNumber(BaseModel):
    phone_number: str


class EmailAddress(BaseModel):
    email_address: str


class UserData(BaseModel):
    id: str
    phone_numbers: List[PhoneNumber] = []
    email_addresses: List[EmailAddress] = []
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    company_id: Optional[str] = None

    @property
    def primary_phone(self) -> Optional[str]:
        return self.phone_numbers[0].phone_number if self.phone_numbers else None

    @property
    def primary_email(self) -> Optional[str]:
        return self.email_addresses[0].email_address if self.email_addresses else None


class DeletedUserData(BaseModel):
    id: str


class UserCreatedEvent(BaseModel):
    type: Literal["user.created"]
    data: UserData


class UserUpdatedEvent(BaseModel):
    type: Literal["user.updated"]
    data: UserData


class UserDeletedEvent(BaseModel):
    type: Literal["user.deleted"]
    data: DeletedUserData


IdentityEvent = Annotated[
    Union[UserCreatedEvent, UserUpdatedEvent, UserDeletedEvent],
    Field(discriminator="type"),
]

HANDLED_EVENT_TYPES = ("user.created", "user.updated", "user.deleted")

identity_event_adapter = TypeAdapter(IdentityEvent)
