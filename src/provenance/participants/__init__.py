"""Participants module — directory of agents, deposits and staff."""

from provenance.participants.directory import Participant, ParticipantDirectory

__all__ = ["Participant", "ParticipantDirectory"]
