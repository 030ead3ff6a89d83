# commission/network.py
from datetime import datetime, timezone
from typing import List, Optional, Dict, Any, NamedTuple

from extensions import db
from models import User
from commission.exceptions import NotFoundError
from logger import commission_logger


MAX_REFERRAL_DEPTH = 5


class NetworkMember(NamedTuple):
    """A downline user and their distance from the root."""
    user: User
    level: int


class ChainLink(NamedTuple):
    """
    One hop up the sponsor chain. `user` is None when `referral_code`
    points at nobody (deleted sponsor, typo at signup).
    """
    level: int
    referral_code: str
    user: Optional[User]


def _join_date(user):
    created = user.created_at
    if created is None:
        return datetime.min.replace(tzinfo=timezone.utc)
    if created.tzinfo is None:
        created = created.replace(tzinfo=timezone.utc)
    return created


class ReferralNetworkHelper:
    """Walks the referred_by relation in both directions, bounded at MAX_REFERRAL_DEPTH."""

    @staticmethod
    def get_downline(root_user_id: int, max_level: int = MAX_REFERRAL_DEPTH) -> List[NetworkMember]:
        """
        Everyone the root sponsored directly or indirectly, level by level.
        Users already seen are dropped, so a cycle in the data ends the walk
        before the depth cap does. Order within the result is not meaningful.
        """
        root = db.session.get(User, root_user_id)
        if root is None:
            raise NotFoundError(f"User {root_user_id} not found")

        visited = {root.id}
        frontier = [root]
        members: List[NetworkMember] = []
        level = 1

        while frontier and level <= max_level:
            codes = [u.referral_code for u in frontier if u.referral_code]
            if not codes:
                break
            next_frontier = []
            for user in User.query.filter(User.referred_by.in_(codes)).all():
                if user.id in visited:
                    commission_logger.warning(
                        f"Referral cycle: user {user.id} revisited at level {level} below root {root.id}"
                    )
                    continue
                visited.add(user.id)
                members.append(NetworkMember(user, level))
                next_frontier.append(user)
            frontier = next_frontier
            level += 1

        return members

    @staticmethod
    def sort_by_join_date(members: List[NetworkMember]) -> List[NetworkMember]:
        """Newest members first."""
        return sorted(members, key=lambda m: _join_date(m.user), reverse=True)

    @staticmethod
    def get_upline(user: User, max_level: int = MAX_REFERRAL_DEPTH) -> List[ChainLink]:
        """
        Sponsor, sponsor's sponsor, ... up to `max_level` hops.
        The walk stops at a null pointer, after an unresolvable code (which is
        still returned as a link with user=None), or on a cycle.
        """
        chain: List[ChainLink] = []
        visited = {user.id}
        current = user

        for level in range(1, max_level + 1):
            code = current.referred_by
            if not code:
                break

            sponsor = User.query.filter_by(referral_code=code).first()
            if sponsor is None:
                commission_logger.warning(
                    f"Broken referral chain above user {current.id}: code {code} does not resolve (level {level})"
                )
                chain.append(ChainLink(level, code, None))
                break

            if sponsor.id in visited:
                commission_logger.warning(
                    f"Referral cycle above user {user.id}: user {sponsor.id} revisited at level {level}"
                )
                break

            visited.add(sponsor.id)
            chain.append(ChainLink(level, code, sponsor))
            current = sponsor

        return chain

    @staticmethod
    def would_create_cycle(new_user: User, sponsor: User) -> bool:
        """True if making `sponsor` the sponsor of `new_user` closes a loop."""
        if new_user.id is not None and new_user.id == sponsor.id:
            return True
        seen = set()
        current = sponsor
        while current is not None and current.referred_by:
            if current.referred_by == new_user.referral_code:
                return True
            if current.id in seen:
                return True
            seen.add(current.id)
            current = User.query.filter_by(referral_code=current.referred_by).first()
        return False

    @staticmethod
    def member_to_dict(member: NetworkMember) -> Dict[str, Any]:
        user = member.user
        return {
            "id": user.id,
            "name": user.name,
            "email": user.email,
            "referralCode": user.referral_code,
            "referredBy": user.referred_by,
            "level": member.level,
            "membershipPlan": user.membership_plan,
            "membershipStatus": user.membership_status,
            "isActive": user.is_active,
            "joinedAt": user.created_at.isoformat() if user.created_at else None,
        }

    @staticmethod
    def network_summary(user_id: int) -> Dict[str, Any]:
        """Level counts, sponsor and upline for the referral dashboard."""
        user = db.session.get(User, user_id)
        if user is None:
            raise NotFoundError(f"User {user_id} not found")

        downline = ReferralNetworkHelper.get_downline(user.id)
        upline = ReferralNetworkHelper.get_upline(user)

        level_counts = {level: 0 for level in range(1, MAX_REFERRAL_DEPTH + 1)}
        active_members = 0
        for member in downline:
            level_counts[member.level] += 1
            if member.user.membership_status == "ACTIVE":
                active_members += 1

        sponsor = upline[0].user if upline else None
        return {
            "userId": user.id,
            "referralCode": user.referral_code,
            "sponsor": {
                "id": sponsor.id,
                "name": sponsor.name,
                "referralCode": sponsor.referral_code,
            } if sponsor else None,
            "upline": [
                {
                    "level": link.level,
                    "referralCode": link.referral_code,
                    "userId": link.user.id if link.user else None,
                    "name": link.user.name if link.user else None,
                }
                for link in upline
            ],
            "directReferrals": level_counts[1],
            "levelCounts": {str(level): count for level, count in level_counts.items()},
            "totalNetworkSize": len(downline),
            "activeMembers": active_members,
        }
