from flask import Blueprint, current_app, jsonify, request

from teamtrack.services import open_services

bp = Blueprint('tournaments', __name__, url_prefix='/api/v1')


# ==================== Tournament CRUD ====================

@bp.route('/tournaments', methods=['GET'])
async def list_tournaments():
    """List tournaments, newest first."""
    limit = request.args.get('limit', 50, type=int)
    offset = request.args.get('offset', 0, type=int)

    async with open_services(current_app) as services:
        tournaments = await services.tournaments.list_tournaments(limit=limit, offset=offset)

    return jsonify({
        'tournaments': [t.to_dict() for t in tournaments],
        'count': len(tournaments),
        'limit': limit,
        'offset': offset
    })


@bp.route('/tournaments', methods=['POST'])
async def create_tournament():
    """Create a new tournament."""
    data = request.get_json(silent=True) or {}

    async with open_services(current_app) as services:
        tournament = await services.tournaments.create_tournament(
            name=data.get('name'),
            created_by=data.get('created_by'),
            max_size=data.get('max_size', 16),
            description=data.get('description'),
            max_organizers=data.get('max_organizers')
        )

    return jsonify({
        'message': 'Tournament created',
        'tournament': tournament.to_dict()
    }), 201


@bp.route('/tournaments/<tournament_id>', methods=['GET'])
async def get_tournament(tournament_id: str):
    async with open_services(current_app) as services:
        tournament = await services.tournaments.get_tournament(tournament_id)
    return jsonify(tournament.to_dict())


@bp.route('/tournaments/<tournament_id>', methods=['PATCH'])
async def update_tournament(tournament_id: str):
    data = request.get_json(silent=True) or {}

    async with open_services(current_app) as services:
        tournament = await services.tournaments.update_tournament(tournament_id, data)
    return jsonify({'tournament': tournament.to_dict()})


@bp.route('/tournaments/<tournament_id>', methods=['DELETE'])
async def delete_tournament(tournament_id: str):
    async with open_services(current_app) as services:
        report = await services.cascade.delete_tournament(tournament_id)

    return jsonify({
        'message': 'Tournament deleted',
        'report': report.to_dict()
    })


# ==================== Organizers ====================

@bp.route('/tournaments/<tournament_id>/organizers', methods=['GET'])
async def list_organizers(tournament_id: str):
    include_pending = request.args.get('include_pending', 'false').lower() == 'true'

    async with open_services(current_app) as services:
        organizers = await services.organizers.list_organizers(tournament_id, include_pending=include_pending)

    return jsonify({
        'organizers': [o.to_dict() for o in organizers],
        'count': len(organizers)
    })


@bp.route('/tournaments/<tournament_id>/organizers', methods=['POST'])
async def invite_organizer(tournament_id: str):
    data = request.get_json(silent=True) or {}

    async with open_services(current_app) as services:
        relation = await services.organizers.invite_organizer(tournament_id, data.get('email'))

    return jsonify({
        'message': 'Organizer invited',
        'relation': relation.to_dict()
    }), 201


@bp.route('/tournaments/<tournament_id>/organizers/<user_id>', methods=['DELETE'])
async def remove_organizer(tournament_id: str, user_id: str):
    async with open_services(current_app) as services:
        await services.organizers.remove_organizer(user_id, tournament_id)
    return jsonify({'message': 'Organizer removed'})


@bp.route('/organizer-invites/<relation_id>/accept', methods=['POST'])
async def accept_organizer_invite(relation_id: str):
    async with open_services(current_app) as services:
        relation = await services.organizers.accept_invite(relation_id)
    return jsonify({'relation': relation.to_dict()})


@bp.route('/organizer-invites/<relation_id>/decline', methods=['POST'])
async def decline_organizer_invite(relation_id: str):
    async with open_services(current_app) as services:
        await services.organizers.decline_invite(relation_id)
    return jsonify({'message': 'Invite declined'})


# ==================== Team Registration ====================

@bp.route('/tournaments/<tournament_id>/teams', methods=['GET'])
async def list_registered_teams(tournament_id: str):
    active = request.args.get('active')
    if active is not None:
        active = active.lower() == 'true'

    async with open_services(current_app) as services:
        await services.tournaments.get_tournament(tournament_id)
        invites = await services.tournaments.list_team_invites(tournament_id, active=active)

    return jsonify({
        'invites': [i.to_dict() for i in invites],
        'count': len(invites)
    })


@bp.route('/tournaments/<tournament_id>/teams', methods=['POST'])
async def invite_team(tournament_id: str):
    """Invite a team into a tournament."""
    data = request.get_json(silent=True) or {}

    async with open_services(current_app) as services:
        invite = await services.tournaments.invite_team(tournament_id, data.get('team_id'))

    return jsonify({
        'message': 'Team invited',
        'invite': invite.to_dict()
    }), 201


@bp.route('/tournaments/<tournament_id>/teams/<team_id>', methods=['DELETE'])
async def withdraw_team(tournament_id: str, team_id: str):
    async with open_services(current_app) as services:
        await services.tournaments.withdraw_team(tournament_id, team_id)
    return jsonify({'message': 'Team withdrawn'})


@bp.route('/tournament-invites/<invite_id>/accept', methods=['POST'])
async def accept_team_invite(invite_id: str):
    async with open_services(current_app) as services:
        invite = await services.tournaments.accept_team_invite(invite_id)
    return jsonify({'invite': invite.to_dict()})


@bp.route('/tournament-invites/<invite_id>/decline', methods=['POST'])
async def decline_team_invite(invite_id: str):
    async with open_services(current_app) as services:
        await services.tournaments.decline_team_invite(invite_id)
    return jsonify({'message': 'Invite declined'})
