"""Registration of callers: organizations and voters."""

from __future__ import annotations

from dataclasses import replace
from typing import Any

from .domain import Identity, Organization, Voter
from .errors import ValidationError

_SAVE_ORGANIZATION = """INSERT INTO organization (name, external_id)
    VALUES ($1, $2)
    ON CONFLICT (name, external_id)
    DO UPDATE SET updated = now()
    RETURNING id, max_concurrent_polls"""

_SAVE_VOTER = """INSERT INTO voter (organization_id, external_id, name)
    VALUES ($1, $2, $3)
    ON CONFLICT (organization_id, external_id)
    DO UPDATE SET name = excluded.name, updated = now()
    RETURNING id, can_vote"""


class RegistrationRepository:
    """Stores organizations and voters, creating or refreshing them."""

    def __init__(self, database: Any) -> None:
        self._db = database

    def save_organization(self, organization: Organization) -> Organization:
        """Insert or touch the organization; return it with its stored id and limit."""
        org_id, max_polls = self._db.query_row(
            _SAVE_ORGANIZATION, organization.name, organization.external_id
        )
        return replace(
            organization,
            id=str(org_id),
            max_concurrent_polls=None if max_polls is None else int(max_polls),
        )

    def save_voter(self, voter: Voter) -> Voter:
        """Insert or update the voter; return it with its stored id and vote right."""
        voter_id, can_vote = self._db.query_row(
            _SAVE_VOTER, voter.organization.id, voter.external_id, voter.name
        )
        return replace(voter, id=str(voter_id), can_vote=bool(can_vote))


class RegistrationHandler:
    """Turns a presented identity into a registered voter."""

    def __init__(self, repository: Any) -> None:
        self._repository = repository

    def register_identity(self, identity: Identity) -> Voter:
        """Register the identity's organization, then its voter."""
        organization = self._repository.save_organization(
            Organization(
                name=identity.organization_name,
                external_id=identity.organization_external_id,
            )
        )
        return self._repository.save_voter(
            Voter(
                external_id=identity.voter_external_id,
                name=identity.voter_name,
                organization=organization,
            )
        )


class ValidatingRegistrationHandler:
    """Rejects incomplete identities before registering them."""

    def __init__(self, handler: Any) -> None:
        self._handler = handler

    def register_identity(self, identity: Identity) -> Voter:
        """Check the required identity fields, then register."""
        if not identity.organization_name:
            raise ValidationError("Invalid identity: OrganizationName is empty.")
        if not identity.organization_external_id:
            raise ValidationError("Invalid identity: OrganizationExternalId is empty.")
        if not identity.voter_external_id:
            raise ValidationError("Invalid identity: VoterExternalId is empty.")
        return self._handler.register_identity(identity)