"""
identity_portal.directory.models

API models for directory administration. Keycloak speaks camelCase; these models
are snake_case and translate at the client boundary.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, SecretStr


class User(BaseModel):
    id: str
    username: str
    email: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    enabled: bool = False
    email_verified: bool = False
    created_timestamp: int | None = None

    @classmethod
    def from_keycloak(cls, data: dict[str, Any]) -> User:
        return cls(
            id=data["id"],
            username=data.get("username", ""),
            email=data.get("email"),
            first_name=data.get("firstName"),
            last_name=data.get("lastName"),
            enabled=bool(data.get("enabled", False)),
            email_verified=bool(data.get("emailVerified", False)),
            created_timestamp=data.get("createdTimestamp"),
        )


class Group(BaseModel):
    id: str
    name: str
    path: str | None = None

    @classmethod
    def from_keycloak(cls, data: dict[str, Any]) -> Group:
        return cls(id=data["id"], name=data.get("name", ""), path=data.get("path"))


class CreateUserRequest(BaseModel):
    username: str = Field(min_length=1, max_length=255)
    email: str | None = Field(default=None, max_length=255, pattern=r"^[^@\s]+@[^@\s]+$")
    first_name: str | None = Field(default=None, max_length=255)
    last_name: str | None = Field(default=None, max_length=255)
    enabled: bool = True
    password: SecretStr | None = None
    temporary_password: bool = True

    def to_keycloak(self) -> dict[str, Any]:
        body: dict[str, Any] = {"username": self.username, "enabled": self.enabled}
        if self.email is not None:
            body["email"] = self.email
        if self.first_name is not None:
            body["firstName"] = self.first_name
        if self.last_name is not None:
            body["lastName"] = self.last_name
        return body


class UpdateUserRequest(BaseModel):
    email: str | None = Field(default=None, max_length=255, pattern=r"^[^@\s]+@[^@\s]+$")
    first_name: str | None = Field(default=None, max_length=255)
    last_name: str | None = Field(default=None, max_length=255)
    enabled: bool | None = None

    def merge_into(self, existing: dict[str, Any]) -> dict[str, Any]:
        # Only fields the caller actually sent overwrite the stored representation.
        merged = dict(existing)
        sent = self.model_fields_set
        if "email" in sent:
            merged["email"] = self.email
        if "first_name" in sent:
            merged["firstName"] = self.first_name
        if "last_name" in sent:
            merged["lastName"] = self.last_name
        if "enabled" in sent and self.enabled is not None:
            merged["enabled"] = self.enabled
        return merged

    def changed_fields(self) -> list[str]:
        return sorted(self.model_fields_set)


class ResetPasswordRequest(BaseModel):
    password: SecretStr = Field(min_length=8)
    temporary: bool = True


class GroupDetail(Group):
    members: list[str] = Field(default_factory=list)


class CreateGroupRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255, pattern=r"^[^/]+$")


class UpdateGroupRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255, pattern=r"^[^/]+$")


class GroupMemberRequest(BaseModel):
    user_id: str = Field(min_length=1, max_length=255)


class SSHPublicKeyRequest(BaseModel):
    public_key: str = Field(min_length=1, max_length=65536)


class SSHPublicKeyResponse(BaseModel):
    public_key: str | None = None
    fingerprint: str | None = None
    registered_at: str | None = None


class Profile(BaseModel):
    id: str
    username: str
    email: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    email_verified: bool = False
    groups: list[str]
    role: str | None = None
    ssh_key_fingerprint: str | None = None
