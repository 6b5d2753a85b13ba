from __future__ import annotations

from datetime import date, datetime, timezone

import pytest

from segheria.domain_errors import DomainError
from segheria.services.line_payload import read_payload
from segheria.use_cases.delivery_ledger import add_delivery_event_use_case
from segheria.use_cases.line_groups import create_group_use_case
from segheria.use_cases.line_transitions import (
    confirm_ddt_use_case,
    confirm_delivery_use_case,
    confirm_production_use_case,
    toggle_ready_for_delivery_use_case,
    update_delivery_date_use_case,
    update_group_delivery_date_use_case,
)

AT = datetime(2026, 10, 19, 8, 0, tzinfo=timezone.utc)


def test_confirm_production_moves_line_to_delivery_with_stamp(make_line, line_repo, current_user) -> None:
    line = make_line(status="production")
    repo = line_repo(line)

    result = confirm_production_use_case(lines=repo, line_id=line.id, current_user=current_user, at=AT)

    assert result is line
    assert line.status == "delivery"
    stamp = read_payload(line.payload).production_confirmed_at
    assert stamp.user == "capo@segheria.local"
    assert stamp.timestamp == AT
    assert repo.commit_calls == 1
    assert [a["action"] for a in repo.audits] == ["production_confirmed"]


def test_confirm_production_rejects_line_already_in_delivery(make_line, line_repo, current_user) -> None:
    line = make_line(status="delivery")
    repo = line_repo(line)

    with pytest.raises(DomainError) as exc:
        confirm_production_use_case(lines=repo, line_id=line.id, current_user=current_user)

    assert exc.value.code == "INVALID_STATUS_TRANSITION"
    assert exc.value.http_status == 400
    assert repo.commit_calls == 0


def test_unknown_line_is_not_found(line_repo, current_user) -> None:
    with pytest.raises(DomainError) as exc:
        confirm_production_use_case(lines=line_repo(), line_id=999, current_user=current_user)

    assert exc.value.code == "LINE_NOT_FOUND"
    assert exc.value.http_status == 404


def test_toggle_ready_applies_to_every_group_member(make_line, line_repo, current_user) -> None:
    first = make_line(status="delivery", group_code="G1")
    second = make_line(status="delivery", group_code="G1")
    outsider = make_line(status="delivery")
    repo = line_repo(first, second, outsider)

    toggled = toggle_ready_for_delivery_use_case(lines=repo, line_id=second.id, current_user=current_user)

    assert {line.id for line in toggled} == {first.id, second.id}
    assert first.status == second.status == "ready_for_delivery"
    assert outsider.status == "delivery"
    assert repo.commit_calls == 1

    toggle_ready_for_delivery_use_case(lines=repo, line_id=first.id, current_user=current_user)

    assert first.status == second.status == "delivery"


def test_toggle_ready_rejects_documented_line(make_line, line_repo, current_user) -> None:
    line = make_line(status="documented")

    with pytest.raises(DomainError) as exc:
        toggle_ready_for_delivery_use_case(lines=line_repo(line), line_id=line.id, current_user=current_user)

    assert exc.value.code == "INVALID_STATUS_TRANSITION"


def test_confirm_delivery_requires_at_least_one_delivery(make_line, line_repo, current_user) -> None:
    line = make_line(status="ready_for_delivery")
    repo = line_repo(line)

    with pytest.raises(DomainError) as exc:
        confirm_delivery_use_case(lines=repo, line_id=line.id, current_user=current_user)

    assert exc.value.code == "DELIVERIES_REQUIRED"
    assert exc.value.http_status == 422
    assert line.status == "ready_for_delivery"
    assert repo.commit_calls == 0


def test_confirm_delivery_documents_whole_group_with_shared_stamp(make_line, line_repo, current_user) -> None:
    trigger = make_line(status="delivery", group_code="G1", deliveries=[{"data": "2026-11-01", "note": ""}])
    member = make_line(status="delivery", group_code="G1")
    repo = line_repo(trigger, member)

    documented = confirm_delivery_use_case(lines=repo, line_id=trigger.id, current_user=current_user, at=AT)

    assert len(documented) == 2
    assert trigger.status == member.status == "documented"
    assert read_payload(trigger.payload).completed_at == read_payload(member.payload).completed_at
    assert read_payload(member.payload).completed_at.timestamp == AT


def test_confirm_ddt_completes_and_overwrites_stamp(make_line, line_repo, current_user) -> None:
    old_stamp = {"timestamp": "2026-10-01T08:00:00Z", "user": "altro@segheria.local"}
    line = make_line(status="documented", completedAt=old_stamp)
    repo = line_repo(line)
    later = datetime(2026, 10, 20, 10, 0, tzinfo=timezone.utc)

    confirm_ddt_use_case(lines=repo, line_id=line.id, current_user=current_user, at=later)

    assert line.status == "completed"
    stamp = read_payload(line.payload).completed_at
    assert stamp.timestamp == later
    assert stamp.user == "capo@segheria.local"


def test_confirm_ddt_requires_documented_status(make_line, line_repo, current_user) -> None:
    line = make_line(status="delivery", deliveries=[{"data": "2026-11-01", "note": ""}])

    with pytest.raises(DomainError) as exc:
        confirm_ddt_use_case(lines=line_repo(line), line_id=line.id, current_user=current_user)

    assert exc.value.code == "INVALID_STATUS_TRANSITION"


def test_delivery_date_change_on_grouped_line_moves_the_group(make_line, line_repo) -> None:
    first = make_line(status="delivery", group_code="G1")
    second = make_line(status="delivery", group_code="G1")
    repo = line_repo(first, second)

    update_delivery_date_use_case(lines=repo, line_id=first.id, new_date=date(2026, 12, 1))

    assert first.payload["deliveryDate"] == second.payload["deliveryDate"] == "2026-12-01"


def test_delivery_date_is_locked_after_documentation(make_line, line_repo) -> None:
    line = make_line(status="documented", completedAt={"timestamp": "2026-10-01T08:00:00Z", "user": "x"})

    with pytest.raises(DomainError) as exc:
        update_delivery_date_use_case(lines=line_repo(line), line_id=line.id, new_date=date(2026, 12, 1))

    assert exc.value.code == "LINE_LOCKED"


def test_group_delivery_date_of_unknown_group_is_not_found(line_repo) -> None:
    with pytest.raises(DomainError) as exc:
        update_group_delivery_date_use_case(lines=line_repo(), group_code="missing", new_date=date(2026, 12, 1))

    assert exc.value.code == "GROUP_NOT_FOUND"


def test_rejected_commit_is_reported_and_rolled_back(make_line, line_repo, current_user) -> None:
    line = make_line(status="production")
    repo = line_repo(line)
    repo.fail_commit = True

    with pytest.raises(DomainError) as exc:
        confirm_production_use_case(lines=repo, line_id=line.id, current_user=current_user)

    assert exc.value.code == "LINE_UPDATE_FAILED"
    assert exc.value.http_status == 500
    assert exc.value.details == {"line_ids": [line.id]}
    assert line.status == "production"
    assert repo.rollback_calls == 1


def test_line_walks_the_whole_flow(make_line, line_repo, current_user) -> None:
    line = make_line(status="production")
    repo = line_repo(line)

    confirm_production_use_case(lines=repo, line_id=line.id, current_user=current_user)
    toggle_ready_for_delivery_use_case(lines=repo, line_id=line.id, current_user=current_user)
    add_delivery_event_use_case(
        lines=repo,
        line_id=line.id,
        delivered_on=date(2026, 11, 2),
        note="consegnato al magazzino",
        current_user=current_user,
    )
    confirm_delivery_use_case(lines=repo, line_id=line.id, current_user=current_user)
    confirm_ddt_use_case(lines=repo, line_id=line.id, current_user=current_user)

    assert line.status == "completed"
    data = read_payload(line.payload)
    assert data.production_confirmed_at is not None
    assert data.completed_at is not None
    assert [event.note for event in data.deliveries] == ["consegnato al magazzino"]
    assert repo.commit_calls == 5


def test_grouped_loads_are_delivered_together(make_line, line_repo, current_user) -> None:
    first = make_line(status="delivery", delivery_date=date(2024, 5, 1))
    second = make_line(status="delivery", delivery_date=date(2024, 5, 3))
    repo = line_repo(first, second)

    create_group_use_case(lines=repo, line_ids=[first.id, second.id], current_user=current_user)
    add_delivery_event_use_case(
        lines=repo,
        line_id=first.id,
        delivered_on=date(2024, 5, 1),
        note=None,
        current_user=current_user,
    )
    confirm_delivery_use_case(lines=repo, line_id=first.id, current_user=current_user, at=AT)

    assert first.status == second.status == "documented"
    first_data, second_data = read_payload(first.payload), read_payload(second.payload)
    assert first_data.completed_at.timestamp == second_data.completed_at.timestamp == AT
    assert first.payload["deliveryDate"] == second.payload["deliveryDate"] == "2024-05-01"
    assert second_data.deliveries == []
