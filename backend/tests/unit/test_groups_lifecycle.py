from datetime import timedelta
from uuid import uuid4

import pytest

from fakes import RecordingConnection
from grouptalk.domain.common.exceptions import BadRequestError, ConflictError, ForbiddenError, NotFoundError
from grouptalk.groups.domain import models
from grouptalk.groups.schemas import dto


async def _create_group(service, as_user, owner_id, *, group_type=models.GroupType.PUBLIC, max_members=5):
	payload = dto.GroupCreateRequest(name="Night Owls", type=group_type, max_members=max_members)
	return await service.create_group(as_user(owner_id), payload)


def _assert_single_owner(repo, group_id):
	group = repo.groups[group_id]
	assert repo.owners(group_id) == [group.owner_id]


@pytest.mark.asyncio
async def test_create_group_makes_creator_owner(groups_service, repo, as_user):
	owner = repo.add_user("Olga")
	group = await _create_group(groups_service, as_user, owner)

	assert group.owner_id == owner
	assert repo.members[(group.id, owner)].role == models.GroupRole.OWNER
	_assert_single_owner(repo, group.id)


@pytest.mark.asyncio
async def test_public_join_yields_member(groups_service, repo, as_user):
	owner, joiner = repo.add_user("Olga"), repo.add_user("Jon")
	group = await _create_group(groups_service, as_user, owner)

	result = await groups_service.join_group(as_user(joiner), group.id)

	assert result.status == "joined"
	assert result.message == "Successfully joined group"
	assert repo.members[(group.id, joiner)].role == models.GroupRole.MEMBER
	assert (group.id, joiner) not in repo.join_requests


@pytest.mark.asyncio
async def test_private_join_then_approve(groups_service, repo, as_user):
	owner, joiner = repo.add_user("Olga"), repo.add_user("Jon")
	group = await _create_group(groups_service, as_user, owner, group_type=models.GroupType.PRIVATE)

	result = await groups_service.join_group(as_user(joiner), group.id)
	assert result.status == "pending"
	assert repo.join_requests[(group.id, joiner)].status == models.JoinRequestStatus.PENDING
	assert (group.id, joiner) not in repo.members

	await groups_service.approve_join_request(as_user(owner), group.id, dto.TargetUserRequest(user_id=joiner))

	assert repo.members[(group.id, joiner)].role == models.GroupRole.MEMBER
	assert repo.join_requests[(group.id, joiner)].status == models.JoinRequestStatus.APPROVED


@pytest.mark.asyncio
async def test_second_approval_of_same_request_is_not_found(groups_service, repo, as_user):
	owner, admin, joiner = repo.add_user("Olga"), repo.add_user("Ada"), repo.add_user("Jon")
	group = await _create_group(groups_service, as_user, owner, group_type=models.GroupType.PRIVATE)
	repo.add_member(group.id, admin, models.GroupRole.ADMIN)
	await groups_service.join_group(as_user(joiner), group.id)

	target = dto.TargetUserRequest(user_id=joiner)
	await groups_service.approve_join_request(as_user(owner), group.id, target)
	with pytest.raises(NotFoundError) as exc:
		await groups_service.approve_join_request(as_user(admin), group.id, target)
	assert exc.value.detail == "join_request_not_found"
	assert await repo.count_members(group.id) == 3


@pytest.mark.asyncio
async def test_pending_request_cannot_be_resubmitted(groups_service, repo, as_user):
	owner, joiner = repo.add_user("Olga"), repo.add_user("Jon")
	group = await _create_group(groups_service, as_user, owner, group_type=models.GroupType.PRIVATE)
	await groups_service.join_group(as_user(joiner), group.id)

	with pytest.raises(ConflictError) as exc:
		await groups_service.join_group(as_user(joiner), group.id)
	assert exc.value.detail == "join_request_pending"


@pytest.mark.asyncio
async def test_rejected_request_can_be_resubmitted(groups_service, repo, as_user):
	owner, joiner = repo.add_user("Olga"), repo.add_user("Jon")
	group = await _create_group(groups_service, as_user, owner, group_type=models.GroupType.PRIVATE)
	await groups_service.join_group(as_user(joiner), group.id)
	await groups_service.reject_join_request(as_user(owner), group.id, dto.TargetUserRequest(user_id=joiner))
	assert repo.join_requests[(group.id, joiner)].status == models.JoinRequestStatus.REJECTED

	result = await groups_service.join_group(as_user(joiner), group.id)

	assert result.status == "pending"
	assert repo.join_requests[(group.id, joiner)].status == models.JoinRequestStatus.PENDING


@pytest.mark.asyncio
async def test_plain_member_cannot_approve(groups_service, repo, as_user):
	owner, member, joiner = repo.add_user("Olga"), repo.add_user("Mia"), repo.add_user("Jon")
	group = await _create_group(groups_service, as_user, owner, group_type=models.GroupType.PRIVATE)
	repo.add_member(group.id, member)
	await groups_service.join_group(as_user(joiner), group.id)

	with pytest.raises(ForbiddenError):
		await groups_service.approve_join_request(as_user(member), group.id, dto.TargetUserRequest(user_id=joiner))
	assert repo.join_requests[(group.id, joiner)].status == models.JoinRequestStatus.PENDING


@pytest.mark.asyncio
async def test_join_missing_group_is_not_found(groups_service, repo, as_user):
	with pytest.raises(NotFoundError):
		await groups_service.join_group(as_user(repo.add_user()), uuid4())


@pytest.mark.asyncio
async def test_join_twice_conflicts(groups_service, repo, as_user):
	owner, joiner = repo.add_user("Olga"), repo.add_user("Jon")
	group = await _create_group(groups_service, as_user, owner)
	await groups_service.join_group(as_user(joiner), group.id)

	with pytest.raises(ConflictError) as exc:
		await groups_service.join_group(as_user(joiner), group.id)
	assert exc.value.detail == "already_member"


@pytest.mark.asyncio
async def test_leave_creates_temporary_ban_and_blocks_rejoin(groups_service, repo, as_user, clock):
	owner, joiner = repo.add_user("Olga"), repo.add_user("Jon")
	group = await _create_group(groups_service, as_user, owner)
	await groups_service.join_group(as_user(joiner), group.id)

	await groups_service.leave_group(as_user(joiner), group.id)

	ban = repo.bans[(group.id, joiner)]
	assert ban.permanent is False
	assert ban.created_at == clock.now
	assert (group.id, joiner) not in repo.members

	with pytest.raises(ForbiddenError) as exc:
		await groups_service.join_group(as_user(joiner), group.id)
	assert exc.value.detail == "lockout_active"
	assert exc.value.payload["retry_at"] == clock.now + timedelta(hours=48)


@pytest.mark.asyncio
async def test_rejoin_allowed_exactly_when_lockout_ends(groups_service, repo, as_user, clock):
	owner, joiner = repo.add_user("Olga"), repo.add_user("Jon")
	group = await _create_group(groups_service, as_user, owner)
	await groups_service.join_group(as_user(joiner), group.id)
	await groups_service.leave_group(as_user(joiner), group.id)

	clock.advance(hours=47, minutes=59, seconds=59)
	with pytest.raises(ForbiddenError):
		await groups_service.join_group(as_user(joiner), group.id)

	clock.advance(seconds=1)
	result = await groups_service.join_group(as_user(joiner), group.id)

	assert result.status == "joined"
	assert (group.id, joiner) not in repo.bans


@pytest.mark.asyncio
async def test_stale_ban_is_cleared_for_private_request(groups_service, repo, as_user, clock):
	owner, joiner = repo.add_user("Olga"), repo.add_user("Jon")
	group = await _create_group(groups_service, as_user, owner, group_type=models.GroupType.PRIVATE)
	repo.add_ban(group.id, joiner, permanent=False, created_at=clock.now - timedelta(hours=72))

	result = await groups_service.join_group(as_user(joiner), group.id)

	assert result.status == "pending"
	assert (group.id, joiner) not in repo.bans


@pytest.mark.asyncio
async def test_permanent_ban_blocks_rejoin_forever(groups_service, repo, as_user, clock):
	owner, joiner = repo.add_user("Olga"), repo.add_user("Jon")
	group = await _create_group(groups_service, as_user, owner)
	await groups_service.join_group(as_user(joiner), group.id)

	response = await groups_service.ban_member(
		as_user(owner), group.id, dto.BanRequest(user_id=joiner, permanent=True)
	)
	assert response.permanent is True

	clock.advance(days=365)
	with pytest.raises(ForbiddenError) as exc:
		await groups_service.join_group(as_user(joiner), group.id)
	assert exc.value.detail == "permanently_banned"
	assert "retry_at" not in exc.value.payload
	assert (group.id, joiner) in repo.bans


@pytest.mark.asyncio
async def test_kick_is_a_temporary_ban(groups_service, repo, as_user, clock):
	owner, joiner = repo.add_user("Olga"), repo.add_user("Jon")
	group = await _create_group(groups_service, as_user, owner)
	await groups_service.join_group(as_user(joiner), group.id)

	await groups_service.ban_member(as_user(owner), group.id, dto.BanRequest(user_id=joiner))

	ban = repo.bans[(group.id, joiner)]
	assert ban.permanent is False
	assert ban.created_at == clock.now


@pytest.mark.asyncio
async def test_owner_leave_fails_without_state_change(groups_service, repo, as_user):
	owner = repo.add_user("Olga")
	group = await _create_group(groups_service, as_user, owner)
	before = dict(repo.members), dict(repo.bans)

	with pytest.raises(BadRequestError) as exc:
		await groups_service.leave_group(as_user(owner), group.id)

	assert exc.value.detail == "owner_must_transfer"
	assert (dict(repo.members), dict(repo.bans)) == before


@pytest.mark.asyncio
async def test_banning_owner_fails_without_state_change(groups_service, repo, as_user):
	owner, admin = repo.add_user("Olga"), repo.add_user("Ada")
	group = await _create_group(groups_service, as_user, owner)
	repo.add_member(group.id, admin, models.GroupRole.ADMIN)
	before = dict(repo.members), dict(repo.bans)

	with pytest.raises(ForbiddenError) as exc:
		await groups_service.ban_member(as_user(admin), group.id, dto.BanRequest(user_id=owner, permanent=True))

	assert exc.value.detail == "cannot_ban_owner"
	assert (dict(repo.members), dict(repo.bans)) == before
	_assert_single_owner(repo, group.id)


@pytest.mark.asyncio
async def test_member_cannot_ban(groups_service, repo, as_user):
	owner, member, other = repo.add_user("Olga"), repo.add_user("Mia"), repo.add_user("Ole")
	group = await _create_group(groups_service, as_user, owner)
	repo.add_member(group.id, member)
	repo.add_member(group.id, other)

	with pytest.raises(ForbiddenError) as exc:
		await groups_service.ban_member(as_user(member), group.id, dto.BanRequest(user_id=other))
	assert exc.value.detail == "admin_or_owner_required"


@pytest.mark.asyncio
async def test_ban_of_non_member_is_not_found(groups_service, repo, as_user):
	owner = repo.add_user("Olga")
	group = await _create_group(groups_service, as_user, owner)

	with pytest.raises(NotFoundError):
		await groups_service.ban_member(as_user(owner), group.id, dto.BanRequest(user_id=repo.add_user()))


@pytest.mark.asyncio
async def test_only_owner_promotes(groups_service, repo, as_user):
	owner, admin, member = repo.add_user("Olga"), repo.add_user("Ada"), repo.add_user("Mia")
	group = await _create_group(groups_service, as_user, owner)
	repo.add_member(group.id, admin, models.GroupRole.ADMIN)
	repo.add_member(group.id, member)

	with pytest.raises(ForbiddenError):
		await groups_service.promote_member(as_user(admin), group.id, dto.TargetUserRequest(user_id=member))

	await groups_service.promote_member(as_user(owner), group.id, dto.TargetUserRequest(user_id=member))
	assert repo.members[(group.id, member)].role == models.GroupRole.ADMIN

	with pytest.raises(BadRequestError) as exc:
		await groups_service.promote_member(as_user(owner), group.id, dto.TargetUserRequest(user_id=member))
	assert exc.value.detail == "already_admin_or_owner"


@pytest.mark.asyncio
async def test_transfer_ownership_keeps_single_owner(groups_service, repo, as_user):
	owner, member = repo.add_user("Olga"), repo.add_user("Mia")
	group = await _create_group(groups_service, as_user, owner)
	repo.add_member(group.id, member)

	result = await groups_service.transfer_ownership(as_user(owner), group.id, dto.TargetUserRequest(user_id=member))

	assert result.owner_id == member
	assert repo.members[(group.id, member)].role == models.GroupRole.OWNER
	assert repo.members[(group.id, owner)].role == models.GroupRole.ADMIN
	_assert_single_owner(repo, group.id)

	# The former owner may now leave
	await groups_service.leave_group(as_user(owner), group.id)
	assert (group.id, owner) not in repo.members


@pytest.mark.asyncio
async def test_transfer_requires_owner_and_member_target(groups_service, repo, as_user):
	owner, member = repo.add_user("Olga"), repo.add_user("Mia")
	group = await _create_group(groups_service, as_user, owner)
	repo.add_member(group.id, member)

	with pytest.raises(ForbiddenError):
		await groups_service.transfer_ownership(as_user(member), group.id, dto.TargetUserRequest(user_id=owner))
	with pytest.raises(NotFoundError):
		await groups_service.transfer_ownership(as_user(owner), group.id, dto.TargetUserRequest(user_id=uuid4()))
	with pytest.raises(BadRequestError):
		await groups_service.transfer_ownership(as_user(owner), group.id, dto.TargetUserRequest(user_id=owner))
	_assert_single_owner(repo, group.id)
	assert repo.groups[group.id].owner_id == owner


@pytest.mark.asyncio
async def test_delete_requires_owner_alone(groups_service, repo, as_user):
	owner, member = repo.add_user("Olga"), repo.add_user("Mia")
	group = await _create_group(groups_service, as_user, owner)
	await groups_service.join_group(as_user(member), group.id)

	with pytest.raises(ForbiddenError):
		await groups_service.delete_group(as_user(member), group.id)
	with pytest.raises(BadRequestError) as exc:
		await groups_service.delete_group(as_user(owner), group.id)
	assert exc.value.detail == "group_has_members"

	await groups_service.ban_member(as_user(owner), group.id, dto.BanRequest(user_id=member))
	await groups_service.delete_group(as_user(owner), group.id)

	assert group.id not in repo.groups
	assert not [key for key in repo.members if key[0] == group.id]


@pytest.mark.asyncio
async def test_delete_missing_group_is_not_found(groups_service, repo, as_user):
	with pytest.raises(NotFoundError):
		await groups_service.delete_group(as_user(repo.add_user()), uuid4())


@pytest.mark.asyncio
async def test_public_join_respects_capacity(groups_service, repo, as_user):
	owner, first, second = repo.add_user("Olga"), repo.add_user("Mia"), repo.add_user("Jon")
	group = await _create_group(groups_service, as_user, owner, max_members=2)
	await groups_service.join_group(as_user(first), group.id)

	with pytest.raises(ConflictError) as exc:
		await groups_service.join_group(as_user(second), group.id)
	assert exc.value.detail == "group_full"
	assert (group.id, second) not in repo.members


@pytest.mark.asyncio
async def test_approval_respects_capacity(groups_service, repo, as_user):
	owner, first, second = repo.add_user("Olga"), repo.add_user("Mia"), repo.add_user("Jon")
	group = await _create_group(groups_service, as_user, owner, group_type=models.GroupType.PRIVATE, max_members=2)
	await groups_service.join_group(as_user(first), group.id)
	await groups_service.join_group(as_user(second), group.id)
	await groups_service.approve_join_request(as_user(owner), group.id, dto.TargetUserRequest(user_id=first))

	with pytest.raises(ConflictError):
		await groups_service.approve_join_request(as_user(owner), group.id, dto.TargetUserRequest(user_id=second))
	assert repo.join_requests[(group.id, second)].status == models.JoinRequestStatus.PENDING


@pytest.mark.asyncio
async def test_leave_and_ban_evict_live_connections(groups_service, repo, registry, as_user):
	owner, leaver, banned = repo.add_user("Olga"), repo.add_user("Lea"), repo.add_user("Ben")
	group = await _create_group(groups_service, as_user, owner)
	await groups_service.join_group(as_user(leaver), group.id)
	await groups_service.join_group(as_user(banned), group.id)
	owner_conn, leaver_conn, banned_conn = RecordingConnection("o"), RecordingConnection("l"), RecordingConnection("b")
	await registry.attach(group.id, owner, owner_conn)
	await registry.attach(group.id, leaver, leaver_conn)
	await registry.attach(group.id, banned, banned_conn)

	await groups_service.leave_group(as_user(leaver), group.id)
	await groups_service.ban_member(as_user(owner), group.id, dto.BanRequest(user_id=banned, permanent=True))

	assert leaver_conn.closed and banned_conn.closed
	assert not owner_conn.closed
	assert [a.connection for a in await registry.snapshot(group.id)] == [owner_conn]
	assert banned_conn.events("group:evicted")[0]["reason"] == "banned"


@pytest.mark.asyncio
async def test_get_group_reports_role_and_count(groups_service, repo, as_user):
	owner, outsider = repo.add_user("Olga"), repo.add_user("Oscar")
	group = await _create_group(groups_service, as_user, owner)

	mine = await groups_service.get_group(as_user(owner), group.id)
	theirs = await groups_service.get_group(as_user(outsider), group.id)

	assert mine.role == models.GroupRole.OWNER
	assert mine.member_count == 1
	assert theirs.role is None
	with pytest.raises(NotFoundError):
		await groups_service.get_group(as_user(owner), uuid4())


@pytest.mark.asyncio
async def test_list_groups_filters_membership_and_decrypts_last_message(
	groups_service, messages_service, repo, as_user
):
	owner, other = repo.add_user("Olga"), repo.add_user("Oscar")
	mine = await _create_group(groups_service, as_user, owner)
	await _create_group(groups_service, as_user, other)
	await messages_service.post_message(as_user(owner), mine.id, "first")
	await messages_service.post_message(as_user(owner), mine.id, "latest")

	listed = await groups_service.list_groups(as_user(owner))
	everything = await groups_service.list_groups(as_user(owner), include_all=True)

	assert [item.id for item in listed.items] == [mine.id]
	assert listed.items[0].last_message.content == "latest"
	assert len(everything.items) == 2
	assert everything.items[0].last_message is None


@pytest.mark.asyncio
async def test_list_all_hides_last_message_from_outsiders(groups_service, messages_service, repo, as_user):
	owner, outsider = repo.add_user("Olga"), repo.add_user("Eve")
	secret = await _create_group(groups_service, as_user, owner, group_type=models.GroupType.PRIVATE)
	await messages_service.post_message(as_user(owner), secret.id, "the launch code is 1234")

	seen_by_outsider = await groups_service.list_groups(as_user(outsider), include_all=True)
	seen_by_owner = await groups_service.list_groups(as_user(owner), include_all=True)

	assert [item.id for item in seen_by_outsider.items] == [secret.id]
	assert seen_by_outsider.items[0].last_message is None
	assert seen_by_owner.items[0].last_message.content == "the launch code is 1234"


@pytest.mark.asyncio
async def test_banned_user_cannot_read_last_message_through_listing(
	groups_service, messages_service, repo, as_user
):
	owner, member = repo.add_user("Olga"), repo.add_user("Mia")
	group = await _create_group(groups_service, as_user, owner)
	await groups_service.join_group(as_user(member), group.id)
	await groups_service.ban_member(as_user(owner), group.id, dto.BanRequest(user_id=member, permanent=True))
	await messages_service.post_message(as_user(owner), group.id, "after the ban")

	listed = await groups_service.list_groups(as_user(member), include_all=True)

	assert listed.items[0].last_message is None


@pytest.mark.asyncio
async def test_list_groups_rejects_bad_paging(groups_service, repo, as_user):
	user = as_user(repo.add_user())
	with pytest.raises(BadRequestError):
		await groups_service.list_groups(user, limit=0)
	with pytest.raises(BadRequestError):
		await groups_service.list_groups(user, offset=-1)


@pytest.mark.asyncio
async def test_list_members_requires_membership(groups_service, repo, as_user):
	owner, member, outsider = repo.add_user("Olga"), repo.add_user("Mia"), repo.add_user("Oscar")
	group = await _create_group(groups_service, as_user, owner)
	await groups_service.join_group(as_user(member), group.id)

	listed = await groups_service.list_members(as_user(member), group.id)

	assert [item.user_id for item in listed.items] == [owner, member]
	assert listed.items[0].user.first_name == "Olga"
	with pytest.raises(ForbiddenError):
		await groups_service.list_members(as_user(outsider), group.id)


@pytest.mark.asyncio
async def test_list_join_requests_for_admins_only(groups_service, repo, as_user):
	owner, member, first, second = (repo.add_user(name) for name in ("Olga", "Mia", "Jon", "Kai"))
	group = await _create_group(groups_service, as_user, owner, group_type=models.GroupType.PRIVATE)
	repo.add_member(group.id, member)
	await groups_service.join_group(as_user(first), group.id)
	await groups_service.join_group(as_user(second), group.id)

	pending = await groups_service.list_join_requests(as_user(owner), group.id)

	assert [item.user_id for item in pending.items] == [first, second]
	with pytest.raises(ForbiddenError):
		await groups_service.list_join_requests(as_user(member), group.id)
