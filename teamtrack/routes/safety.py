from flask import Blueprint, current_app, jsonify, request

from teamtrack.errors import ValidationError
from teamtrack.services import open_services

bp = Blueprint('safety', __name__, url_prefix='/api/v1')


def _require_arg(name: str) -> str:
    value = request.args.get(name)
    if not value:
        raise ValidationError(f"Query parameter '{name}' is required")
    return value


@bp.route('/safety/coach', methods=['GET'])
async def check_coach_safety():
    """Can the user leave a team (team_id given) or delete their account?"""
    user_id = _require_arg('user_id')
    action = request.args.get('action', 'LEAVE_TEAM')

    async with open_services(current_app) as services:
        result = await services.safety.check_coach_safety(
            user_id, action, team_id=request.args.get('team_id')
        )
    return jsonify(result.to_dict())


@bp.route('/safety/organizer', methods=['GET'])
async def check_organizer_safety():
    user_id = _require_arg('user_id')
    tournament_id = _require_arg('tournament_id')
    action = request.args.get('action', 'LEAVE_TOURNAMENT')

    async with open_services(current_app) as services:
        result = await services.safety.check_organizer_safety(user_id, tournament_id, action)
    return jsonify(result.to_dict())


@bp.route('/safety/users/<user_id>/tournaments', methods=['GET'])
async def check_removable_from_tournaments(user_id: str):
    async with open_services(current_app) as services:
        can_proceed = await services.safety.check_user_can_be_removed_from_all_tournaments(user_id)

    if can_proceed:
        message = "User can be safely removed from all tournaments."
    else:
        message = (
            "Cannot delete account - you are the last organizer of one or more tournaments. "
            "Please invite other organizers or delete the tournaments first."
        )
    return jsonify({'can_proceed': can_proceed, 'message': message})


@bp.route('/cascades/<workflow>/<target_id>/stages/<stage>/retry', methods=['POST'])
async def retry_cascade_stage(workflow: str, target_id: str, stage: str):
    """Re-run one stage of a cascade that failed part way. Refused (400) while the target is still active."""
    async with open_services(current_app) as services:
        report = await services.cascade.retry_stage(workflow, target_id, stage)
    return jsonify({'report': report.to_dict()})
