from __future__ import annotations

from enum import Enum


class Env(str, Enum):
    dev = "dev"
    prod = "prod"
    test = "test"


class Role(str, Enum):
    ADMIN = "ADMIN"
    DPA = "DPA"
    CAPTAIN = "CAPTAIN"
    FLEET_MASTER = "FLEET_MASTER"
    CHIEF_ENGINEER = "CHIEF_ENGINEER"
    OFFICER = "OFFICER"
    CREW = "CREW"
    SHORE_STAFF = "SHORE_STAFF"
    AUDITOR = "AUDITOR"
