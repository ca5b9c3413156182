# eventcast/services/roster.py

"""
Participant directory.

Participant groups are the units an event is published to. The directory
resolves a group to the channel its announcements go to and to the members
that belong to it (used for "no response" reminder recipients).
"""

import json
import logging
import os
from dataclasses import dataclass
from typing import Dict, Iterable, List

from eventcast.channels.base import ChannelTarget

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RosterMember:
    person_id: str
    display_name: str


class RosterProvider:
    """Default provider: knows no channels and no members."""

    def members_for_groups(self, group_ids: Iterable[str]) -> List[RosterMember]:
        return []

    def channels_for_groups(self, group_ids: Iterable[str]) -> List[ChannelTarget]:
        return []


class StaticRosterProvider(RosterProvider):
    """
    Directory backed by an in-memory mapping, typically loaded from JSON:

        {
          "<group_id>": {
            "guild_id": "...",
            "channel_id": "...",
            "members": [{"person_id": "...", "display_name": "..."}]
          }
        }
    """

    def __init__(self, groups: Dict[str, dict]):
        self.groups = groups or {}

    @classmethod
    def from_file(cls, path):
        if not path or not os.path.exists(path):
            logger.warning(f"Participant directory {path!r} not found; using empty directory")
            return cls({})
        with open(path, 'r', encoding='utf-8') as f:
            return cls(json.load(f))

    def members_for_groups(self, group_ids):
        members = {}
        for group_id in group_ids or ():
            for raw in self.groups.get(str(group_id), {}).get('members', []):
                member = RosterMember(person_id=str(raw['person_id']), display_name=raw.get('display_name', ''))
                members.setdefault(member.person_id, member)
        return list(members.values())

    def channels_for_groups(self, group_ids):
        targets = []
        for group_id in group_ids or ():
            group = self.groups.get(str(group_id))
            if not group:
                continue
            guild_id = group.get('guild_id')
            channel_id = group.get('channel_id')
            if not guild_id or not channel_id:
                logger.warning(f"Incomplete channel integration for group {group_id}")
                continue
            targets.append(ChannelTarget(channel_id=str(channel_id), guild_id=str(guild_id)))
        return targets
