from __future__ import annotations

import copy
from datetime import date

import pytest

from segheria.domain_errors import DomainError
from segheria.services.line_payload import read_payload
from segheria.services.note_debouncer import NoteDebouncer
from segheria.use_cases.delivery_ledger import (
    add_delivery_event_use_case,
    loads_for_day_use_case,
    remove_delivery_event_use_case,
    update_note_use_case,
    write_note,
)


def _events(line) -> list[tuple[date, str]]:
    return [(event.delivered_on, event.note) for event in read_payload(line.payload).deliveries]


def test_add_delivery_appends_at_the_end(make_line, line_repo, current_user) -> None:
    line = make_line(status="delivery", deliveries=[{"data": "2026-11-01", "note": "primo"}])
    repo = line_repo(line)

    add_delivery_event_use_case(
        lines=repo,
        line_id=line.id,
        delivered_on=date(2026, 11, 3),
        note=None,
        current_user=current_user,
    )

    assert _events(line) == [(date(2026, 11, 1), "primo"), (date(2026, 11, 3), "")]
    assert repo.audits[-1]["details"] == {"data": "2026-11-03", "count": 2}


def test_add_delivery_requires_a_date(make_line, line_repo, current_user) -> None:
    line = make_line(status="delivery")

    with pytest.raises(DomainError) as exc:
        add_delivery_event_use_case(
            lines=line_repo(line),
            line_id=line.id,
            delivered_on=None,
            note="senza data",
            current_user=current_user,
        )

    assert exc.value.code == "DELIVERY_DATE_REQUIRED"


def test_remove_delivery_by_position_keeps_the_others_in_order(make_line, line_repo, current_user) -> None:
    line = make_line(
        status="delivery",
        deliveries=[
            {"data": "2026-11-01", "note": "a"},
            {"data": "2026-11-02", "note": "b"},
            {"data": "2026-11-03", "note": "c"},
        ],
    )
    repo = line_repo(line)

    remove_delivery_event_use_case(lines=repo, line_id=line.id, index=1, current_user=current_user)

    assert [note for _, note in _events(line)] == ["a", "c"]


def test_remove_delivery_out_of_range(make_line, line_repo, current_user) -> None:
    line = make_line(status="delivery", deliveries=[{"data": "2026-11-01", "note": "a"}])
    repo = line_repo(line)

    with pytest.raises(DomainError) as exc:
        remove_delivery_event_use_case(lines=repo, line_id=line.id, index=1, current_user=current_user)

    assert exc.value.code == "DELIVERY_INDEX_OUT_OF_RANGE"
    assert exc.value.details == {"line_id": line.id, "index": 1, "count": 1}
    assert repo.commit_calls == 0


def test_removing_the_delivery_just_added_restores_the_payload(make_line, line_repo, current_user) -> None:
    line = make_line(
        status="ready_for_delivery",
        note="scarico dal retro",
        deliveries=[{"data": "2026-11-01", "note": "primo"}],
    )
    repo = line_repo(line)
    before = copy.deepcopy(line.payload)

    add_delivery_event_use_case(
        lines=repo,
        line_id=line.id,
        delivered_on=date(2026, 11, 4),
        note="secondo",
        current_user=current_user,
    )
    added_at = len(read_payload(line.payload).deliveries) - 1
    remove_delivery_event_use_case(lines=repo, line_id=line.id, index=added_at, current_user=current_user)

    assert line.payload == before
    assert repo.commit_calls == 2


def test_add_delivery_is_rejected_while_in_production(make_line, line_repo, current_user) -> None:
    line = make_line(status="production")
    repo = line_repo(line)

    with pytest.raises(DomainError) as exc:
        add_delivery_event_use_case(
            lines=repo,
            line_id=line.id,
            delivered_on=date(2026, 11, 3),
            note=None,
            current_user=current_user,
        )

    assert exc.value.code == "LINE_LOCKED"
    assert exc.value.http_status == 400
    assert exc.value.details == {"line_id": line.id, "status": "production"}
    assert "deliveries" not in line.payload
    assert repo.commit_calls == 0


def test_remove_delivery_is_rejected_once_completed(make_line, line_repo, current_user) -> None:
    line = make_line(
        status="completed",
        deliveries=[{"data": "2026-11-01", "note": "unica"}],
        completedAt={"timestamp": "2026-11-02T08:00:00Z", "user": "capo@segheria.local"},
    )
    repo = line_repo(line)

    with pytest.raises(DomainError) as exc:
        remove_delivery_event_use_case(lines=repo, line_id=line.id, index=0, current_user=current_user)

    assert exc.value.code == "LINE_LOCKED"
    assert [note for _, note in _events(line)] == ["unica"]
    assert repo.commit_calls == 0


def test_write_note_persists_text(make_line, line_repo) -> None:
    line = make_line(status="delivery", note="vecchia")
    repo = line_repo(line)

    write_note(lines=repo, line_id=line.id, text="nuova")

    assert line.payload["note"] == "nuova"
    assert repo.commit_calls == 1


def test_update_note_queues_write_without_touching_the_line(make_line, line_repo) -> None:
    line = make_line(status="delivery", note="vecchia")
    repo = line_repo(line)
    written: list[tuple[int, str]] = []
    debouncer = NoteDebouncer(lambda line_id, text: written.append((line_id, text)), quiet_period=60)

    shown = update_note_use_case(lines=repo, debouncer=debouncer, line_id=line.id, text="nuova")

    assert shown == "nuova"
    assert debouncer.pending_note(line.id) == "nuova"
    assert line.payload["note"] == "vecchia"
    assert written == []
    debouncer.shutdown()


def test_update_note_on_unknown_line_queues_nothing(line_repo) -> None:
    debouncer = NoteDebouncer(lambda line_id, text: None, quiet_period=60)

    with pytest.raises(DomainError) as exc:
        update_note_use_case(lines=line_repo(), debouncer=debouncer, line_id=5, text="x")

    assert exc.value.code == "LINE_NOT_FOUND"
    assert debouncer.has_pending() is False


def test_loads_for_day_filters_by_date_and_hides_incomplete(make_line, line_repo) -> None:
    today = date(2026, 11, 2)
    due = make_line(status="ready_for_delivery", delivery_date=today)
    grouped = make_line(status="delivery", delivery_date=today, group_code="G")
    tomorrow = make_line(status="delivery", delivery_date=date(2026, 11, 3))
    in_production = make_line(status="production", delivery_date=today)
    incomplete = make_line(status="delivery", delivery_date=today, quantity=None)
    repo = line_repo(due, grouped, tomorrow, in_production, incomplete)

    loads = loads_for_day_use_case(lines=repo, day=today)

    assert [line.id for line in loads] == [grouped.id, due.id]
