from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from .archival.service import ArchivalManager
from .audit.service import ConsistencyAuditor
from .children.service import ChildService
from .core.constants import DEFAULT_ISOLATION_LEVEL
from .database.connection import DatabaseConnection, DBConfig
from .enrollments.mysql_association_store import MySQLAssociationStore
from .enrollments.repository import AssociationStore
from .enrollments.service import EnrollmentService
from .enrollments.state_machine import EnrollmentStateMachine
from .users.mysql_user_repository import MySQLUserRepository
from .users.repository import UserRepository
from .users.service import AuthService, UserService


@dataclass(frozen=True)
class Container:
    conn: object

    users_repo: UserRepository
    store: AssociationStore

    auth_service: AuthService
    user_service: UserService
    child_service: ChildService
    state_machine: EnrollmentStateMachine
    enrollment_service: EnrollmentService
    archival_manager: ArchivalManager
    auditor: ConsistencyAuditor


def wire_services(
    *,
    conn,
    users_repo: UserRepository,
    store: AssociationStore,
    clock: Callable[[], datetime] = datetime.now,
) -> Container:
    state_machine = EnrollmentStateMachine(store, clock=clock)
    return Container(
        conn=conn,
        users_repo=users_repo,
        store=store,
        auth_service=AuthService(users_repo),
        user_service=UserService(users_repo),
        child_service=ChildService(store),
        state_machine=state_machine,
        enrollment_service=EnrollmentService(store, state_machine),
        archival_manager=ArchivalManager(store, state_machine, clock=clock),
        auditor=ConsistencyAuditor(store, state_machine),
    )


def build_container(*, db_config: dict, isolation_level: str = DEFAULT_ISOLATION_LEVEL) -> Container:
    conn = DatabaseConnection(DBConfig.from_mapping(db_config, isolation_level=isolation_level))
    return wire_services(
        conn=conn,
        users_repo=MySQLUserRepository(conn),
        store=MySQLAssociationStore(conn),
    )
