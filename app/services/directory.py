"""
External collaborator contracts: member directory and exchange ledger

Members and business exchanges are owned by other systems. The referral
workflow only needs to resolve ids to profiles and to count confirmed
exchanges for conversion rates.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Optional
from urllib.parse import quote
import httpx
import logging

from app.core.config import settings

logger = logging.getLogger(__name__)

PRIVILEGED_ROLES = {"admin", "coach"}

@dataclass(frozen=True)
class MemberProfile:
    id: str
    name: Optional[str] = None
    company: Optional[str] = None
    status: str = "active"
    email: Optional[str] = None
    role: str = "member"

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    @property
    def is_privileged(self) -> bool:
        return self.role in PRIVILEGED_ROLES

class MemberDirectory(ABC):
    """Resolves member ids to profiles"""

    @abstractmethod
    async def get_member(self, member_id: str) -> Optional[MemberProfile]:
        ...

    async def get_members(self, member_ids: Iterable[str]) -> Dict[str, MemberProfile]:
        members = {}
        for member_id in set(member_ids):
            member = await self.get_member(member_id)
            if member:
                members[member_id] = member
        return members

    async def is_privileged(self, member_id: str) -> bool:
        member = await self.get_member(member_id)
        return bool(member and member.is_active and member.is_privileged)

class StaticMemberDirectory(MemberDirectory):
    """In-memory directory for development and tests"""

    def __init__(self, members: Optional[List[MemberProfile]] = None):
        self._members: Dict[str, MemberProfile] = {m.id: m for m in members or []}

    def add(self, member: MemberProfile) -> None:
        self._members[member.id] = member

    async def get_member(self, member_id: str) -> Optional[MemberProfile]:
        return self._members.get(str(member_id))

class HttpMemberDirectory(MemberDirectory):
    """Directory backed by the member service's REST API"""

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self._transport = transport

    async def get_member(self, member_id: str) -> Optional[MemberProfile]:
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else None
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.get(
                f"{self.base_url}/members/{quote(str(member_id), safe='')}",
                headers=headers
            )
        if response.status_code == 404:
            return None
        response.raise_for_status()
        data = response.json()
        return MemberProfile(
            id=str(data.get("id", member_id)),
            name=data.get("name"),
            company=data.get("company"),
            status=data.get("status", "active"),
            email=data.get("email"),
            role=data.get("role", "member"),
        )

def build_member_directory() -> MemberDirectory:
    """Directory from settings; an empty static directory when unconfigured"""
    if settings.MEMBER_DIRECTORY_URL:
        return HttpMemberDirectory(settings.MEMBER_DIRECTORY_URL, settings.MEMBER_DIRECTORY_TOKEN)
    logger.warning("MEMBER_DIRECTORY_URL is not set; using an empty in-memory directory")
    return StaticMemberDirectory()

class ExchangeLedger(ABC):
    """Counts confirmed business exchanges (meetings)"""

    @abstractmethod
    async def count_confirmed_exchanges(
        self,
        start: datetime,
        end: datetime,
        member_id: Optional[str] = None
    ) -> int:
        ...

class NullExchangeLedger(ExchangeLedger):
    async def count_confirmed_exchanges(self, start, end, member_id=None) -> int:
        return 0
