from flask import Blueprint, current_app, jsonify, request

from teamtrack.services import open_services

bp = Blueprint('teams', __name__, url_prefix='/api/v1')


# ==================== Teams ====================

@bp.route('/teams', methods=['GET'])
async def list_teams():
    limit = request.args.get('limit', 50, type=int)
    offset = request.args.get('offset', 0, type=int)
    include_inactive = request.args.get('include_inactive', 'false').lower() == 'true'

    async with open_services(current_app) as services:
        teams = await services.teams.list_teams(
            active_only=not include_inactive, limit=limit, offset=offset
        )

    return jsonify({
        'teams': [t.to_dict() for t in teams],
        'count': len(teams),
        'limit': limit,
        'offset': offset
    })


@bp.route('/teams', methods=['POST'])
async def create_team():
    """Create a team; the creator becomes its first coach."""
    data = request.get_json(silent=True) or {}

    async with open_services(current_app) as services:
        team = await services.teams.create_team(
            name=data.get('name'),
            created_by=data.get('created_by'),
            sport=data.get('sport'),
            age_group=data.get('age_group'),
            description=data.get('description')
        )

    return jsonify({
        'message': 'Team created',
        'team': team.to_dict()
    }), 201


@bp.route('/teams/<team_id>', methods=['GET'])
async def get_team(team_id: str):
    async with open_services(current_app) as services:
        team = await services.teams.get_team(team_id)
    return jsonify(team.to_dict())


@bp.route('/teams/<team_id>', methods=['PATCH'])
async def update_team(team_id: str):
    data = request.get_json(silent=True) or {}

    async with open_services(current_app) as services:
        team = await services.teams.update_team(team_id, data)
    return jsonify({'team': team.to_dict()})


@bp.route('/teams/<team_id>', methods=['DELETE'])
async def terminate_team(team_id: str):
    """Terminate a team and everything that belongs to it."""
    async with open_services(current_app) as services:
        report = await services.cascade.terminate_team(team_id)

    return jsonify({
        'message': 'Team terminated',
        'report': report.to_dict()
    })


# ==================== Members ====================

@bp.route('/teams/<team_id>/members', methods=['GET'])
async def list_members(team_id: str):
    async with open_services(current_app) as services:
        members = await services.memberships.list_by_team(team_id)

    return jsonify({
        'members': [m.to_dict() for m in members],
        'count': len(members)
    })


@bp.route('/teams/<team_id>/members', methods=['POST'])
async def add_member(team_id: str):
    data = request.get_json(silent=True) or {}

    async with open_services(current_app) as services:
        membership = await services.memberships.add_membership(
            data.get('user_id'), team_id, data.get('role')
        )

    return jsonify({
        'message': 'Member added',
        'membership': membership.to_dict()
    }), 201


@bp.route('/teams/<team_id>/members/<user_id>', methods=['DELETE'])
async def remove_member(team_id: str, user_id: str):
    async with open_services(current_app) as services:
        membership = await services.memberships.remove_membership(user_id, team_id)

    return jsonify({
        'message': 'Member removed',
        'membership': membership.to_dict()
    })


@bp.route('/teams/<team_id>/invites', methods=['POST'])
async def invite_member(team_id: str):
    data = request.get_json(silent=True) or {}

    async with open_services(current_app) as services:
        membership = await services.memberships.invite_member(
            team_id, data.get('email'), data.get('role')
        )

    return jsonify({
        'message': 'Invite sent',
        'membership': membership.to_dict()
    }), 201


# ==================== Membership lifecycle ====================

@bp.route('/memberships/<membership_id>/accept', methods=['POST'])
async def accept_invite(membership_id: str):
    async with open_services(current_app) as services:
        membership = await services.memberships.accept_invite(membership_id)
    return jsonify({'membership': membership.to_dict()})


@bp.route('/memberships/<membership_id>/decline', methods=['POST'])
async def decline_invite(membership_id: str):
    async with open_services(current_app) as services:
        await services.memberships.decline_invite(membership_id)
    return jsonify({'message': 'Invite declined'})


@bp.route('/memberships/<membership_id>', methods=['PATCH'])
async def update_role(membership_id: str):
    data = request.get_json(silent=True) or {}

    async with open_services(current_app) as services:
        membership = await services.memberships.update_role(membership_id, data.get('role'))
    return jsonify({'membership': membership.to_dict()})


@bp.route('/memberships/<membership_id>', methods=['DELETE'])
async def leave_team(membership_id: str):
    async with open_services(current_app) as services:
        membership = await services.memberships.leave_team(membership_id)

    return jsonify({
        'message': 'Left team',
        'membership': membership.to_dict()
    })
