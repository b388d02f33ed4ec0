from __future__ import annotations

from sqlmodel import Session, SQLModel, create_engine, select

from personnel_console.domain.models import EventEnvelope, EventRecord
from personnel_console.infra.events import EventBus


def test_event_bus_publish_and_subscribe() -> None:
    engine = create_engine("sqlite:///:memory:")
    SQLModel.metadata.create_all(engine)

    bus = EventBus()
    seen: list[str] = []

    def handler(event: EventEnvelope) -> None:
        seen.append(event.event_id)

    event = EventEnvelope(
        event_type="user.block",
        actor_id="admin-1",
        payload={"user_id": "user-1", "from": "ACTIVE", "to": "BLOCKED"},
    )
    bus.subscribe("user.block", handler)

    with Session(engine) as session:
        bus.publish(event, session=session)
        session.commit()

    with Session(engine) as session:
        stored = session.exec(select(EventRecord)).all()

    assert len(stored) == 1
    assert stored[0].event_id == event.event_id
    assert stored[0].actor_id == "admin-1"
    assert seen == [event.event_id]


def test_wildcard_subscriber_sees_every_event_and_unsubscribe_stops_delivery() -> None:
    engine = create_engine("sqlite:///:memory:")
    SQLModel.metadata.create_all(engine)

    bus = EventBus()
    seen: list[str] = []

    def handler(event: EventEnvelope) -> None:
        seen.append(event.event_type)

    bus.subscribe("*", handler)
    with Session(engine) as session:
        bus.publish_dict("role.assigned", {"user_id": "u1"}, session=session)
        bus.publish_dict("permission.revoked", {"role_id": "r1"}, session=session)
        session.commit()
        bus.unsubscribe("*", handler)
        bus.publish_dict("role.removed", {"user_id": "u1"}, session=session)
        session.commit()

    with Session(engine) as session:
        stored = session.exec(select(EventRecord)).all()

    assert seen == ["role.assigned", "permission.revoked"]
    assert len(stored) == 3


def test_handlers_wait_for_commit_and_skip_rolled_back_events() -> None:
    engine = create_engine("sqlite:///:memory:")
    SQLModel.metadata.create_all(engine)

    bus = EventBus()
    seen: list[str] = []

    def handler(event: EventEnvelope) -> None:
        seen.append(event.event_type)

    bus.subscribe("*", handler)
    with Session(engine) as session:
        bus.publish_dict("role.assigned", {"user_id": "u1"}, session=session)
        assert seen == []
        session.rollback()

        bus.publish_dict("role.removed", {"user_id": "u1"}, session=session)
        session.commit()

    with Session(engine) as session:
        stored = session.exec(select(EventRecord)).all()

    assert seen == ["role.removed"]
    assert [item.event_type for item in stored] == ["role.removed"]
