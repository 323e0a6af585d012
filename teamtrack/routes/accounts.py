from flask import Blueprint, current_app, jsonify, request

from teamtrack.services import open_services

bp = Blueprint('accounts', __name__, url_prefix='/api/v1')


# ==================== Registration & login ====================

@bp.route('/users', methods=['POST'])
async def register_user():
    """Create an identity and its profile."""
    data = request.get_json(silent=True) or {}

    async with open_services(current_app) as services:
        profile = await services.profiles.register_user(
            email=data.get('email'),
            password=data.get('password'),
            first_name=data.get('first_name'),
            last_name=data.get('last_name'),
            phone_number=data.get('phone_number'),
            date_of_birth=data.get('date_of_birth')
        )

    return jsonify({
        'message': 'User registered',
        'user': profile.to_dict()
    }), 201


@bp.route('/auth/login', methods=['POST'])
async def login():
    data = request.get_json(silent=True) or {}

    async with open_services(current_app) as services:
        user_id = await services.identity.authenticate(data.get('email'), data.get('password'))
        profile = await services.profiles.get_profile(user_id)

    return jsonify({'user': profile.to_dict()})


# ==================== Profile ====================

@bp.route('/users/<user_id>', methods=['GET'])
async def get_user(user_id: str):
    async with open_services(current_app) as services:
        profile = await services.profiles.get_profile(user_id)
    return jsonify(profile.to_dict())


@bp.route('/users/<user_id>', methods=['PATCH'])
async def update_user(user_id: str):
    data = request.get_json(silent=True) or {}

    async with open_services(current_app) as services:
        profile = await services.profiles.update_profile(user_id, data)
    return jsonify({'user': profile.to_dict()})


@bp.route('/users/<user_id>', methods=['DELETE'])
async def delete_user(user_id: str):
    """Delete the account; refused with 409 while the user is a sole coach or organizer."""
    async with open_services(current_app) as services:
        report = await services.cascade.delete_user_account(user_id)

    return jsonify({
        'message': 'Account deleted',
        'report': report.to_dict()
    })


# ==================== Relationships ====================

@bp.route('/users/<user_id>/memberships', methods=['GET'])
async def list_user_memberships(user_id: str):
    async with open_services(current_app) as services:
        memberships = await services.memberships.list_by_user(user_id)

    return jsonify({
        'memberships': [m.to_dict() for m in memberships],
        'count': len(memberships)
    })


@bp.route('/users/<user_id>/invites', methods=['GET'])
async def list_user_invites(user_id: str):
    """Pending team and organizer invites addressed to the user."""
    async with open_services(current_app) as services:
        team_invites = await services.memberships.list_pending_invites(user_id)
        organizer_invites = await services.organizers.list_pending_invites(user_id)

    return jsonify({
        'team_invites': [m.to_dict() for m in team_invites],
        'organizer_invites': [r.to_dict() for r in organizer_invites]
    })


@bp.route('/users/<user_id>/tournaments', methods=['GET'])
async def list_organized_tournaments(user_id: str):
    async with open_services(current_app) as services:
        tournament_ids = await services.organizers.list_tournaments_organized_by(user_id)

    return jsonify({
        'user_id': user_id,
        'tournament_ids': tournament_ids
    })
