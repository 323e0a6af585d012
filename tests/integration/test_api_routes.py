"""
Integration tests for API routes.
Drives the accounts, teams, tournaments and safety blueprints through the
Flask test client against the in-memory backends.
"""
import pytest
import json


def register(client, name):
    response = client.post('/api/v1/users', json={
        'email': f'{name}@example.com',
        'password': 'secret-password',
        'first_name': name.capitalize()
    })
    assert response.status_code == 201
    return json.loads(response.data)['user']


def create_team(client, name, created_by):
    response = client.post('/api/v1/teams', json={'name': name, 'created_by': created_by})
    assert response.status_code == 201
    return json.loads(response.data)['team']


def create_tournament(client, name, created_by, **extra):
    response = client.post('/api/v1/tournaments', json={'name': name, 'created_by': created_by, **extra})
    assert response.status_code == 201
    return json.loads(response.data)['tournament']


@pytest.fixture
def alice(client):
    return register(client, 'alice')


@pytest.fixture
def bob(client):
    return register(client, 'bob')


class TestHealthEndpoint:
    """Tests for /health endpoint."""

    def test_health_check(self, client):
        """Health check should return 200."""
        response = client.get('/health')
        assert response.status_code == 200

        data = json.loads(response.data)
        assert data['status'] == 'healthy'
        assert data['store_backend'] == 'memory'


class TestAccounts:
    """Tests for registration, login and profile lookup."""

    def test_register_and_login(self, client, alice):
        response = client.post('/api/v1/auth/login', json={
            'email': 'alice@example.com', 'password': 'secret-password'
        })
        assert response.status_code == 200
        assert json.loads(response.data)['user']['id'] == alice['id']

    def test_login_wrong_password(self, client, alice):
        response = client.post('/api/v1/auth/login', json={
            'email': 'alice@example.com', 'password': 'wrong'
        })
        assert response.status_code == 400

    def test_register_duplicate(self, client, alice):
        response = client.post('/api/v1/users', json={
            'email': 'alice@example.com', 'password': 'another'
        })
        assert response.status_code == 400
        assert json.loads(response.data)['error'] == 'validation_error'

    def test_get_missing_user(self, client):
        response = client.get('/api/v1/users/nonexistent')
        assert response.status_code == 404
        assert json.loads(response.data)['entity'] == 'user'


class TestTeamFlows:
    """Tests for team creation, invites and leaving."""

    def test_creator_is_coach(self, client, alice):
        team = create_team(client, 'Tigers', alice['id'])

        response = client.get(f"/api/v1/teams/{team['id']}/members")
        data = json.loads(response.data)
        assert data['count'] == 1
        assert data['members'][0]['role'] == 'COACH'
        assert data['members'][0]['user']['email'] == 'alice@example.com'

    def test_invite_accept_and_promote(self, client, alice, bob):
        team = create_team(client, 'Tigers', alice['id'])

        response = client.post(f"/api/v1/teams/{team['id']}/invites", json={
            'email': 'bob@example.com', 'role': 'PLAYER'
        })
        assert response.status_code == 201
        membership_id = json.loads(response.data)['membership']['id']

        invites = json.loads(client.get(f"/api/v1/users/{bob['id']}/invites").data)
        assert [m['id'] for m in invites['team_invites']] == [membership_id]

        response = client.post(f'/api/v1/memberships/{membership_id}/accept')
        assert json.loads(response.data)['membership']['active'] is True

        response = client.patch(f'/api/v1/memberships/{membership_id}', json={'role': 'COACH'})
        assert response.status_code == 200
        assert json.loads(client.get(f"/api/v1/teams/{team['id']}").data)['coach_count'] == 2

    def test_invalid_role(self, client, alice):
        team = create_team(client, 'Tigers', alice['id'])
        response = client.post(f"/api/v1/teams/{team['id']}/invites", json={
            'email': 'alice@example.com', 'role': 'CAPTAIN'
        })
        assert response.status_code == 400

    def test_sole_coach_cannot_leave(self, client, alice):
        team = create_team(client, 'Tigers', alice['id'])

        response = client.delete(f"/api/v1/teams/{team['id']}/members/{alice['id']}")
        assert response.status_code == 409

        data = json.loads(response.data)
        assert data['aggregate_type'] == 'team'
        assert data['aggregate_id'] == team['id']
        assert 'only coach' in data['message']

    def test_terminate_team(self, client, alice):
        team = create_team(client, 'Tigers', alice['id'])

        response = client.delete(f"/api/v1/teams/{team['id']}")
        assert response.status_code == 200
        report = json.loads(response.data)['report']
        assert report['workflow'] == 'terminate_team'
        assert report['warnings'] == []

        assert client.get(f"/api/v1/teams/{team['id']}").status_code == 404
        memberships = json.loads(client.get(f"/api/v1/users/{alice['id']}/memberships").data)
        assert memberships['count'] == 0


class TestAccountDeletion:
    """Tests for DELETE /api/v1/users/<id>."""

    def test_blocked_while_sole_coach(self, client, alice):
        create_team(client, 'Tigers', alice['id'])

        response = client.delete(f"/api/v1/users/{alice['id']}")
        assert response.status_code == 409
        assert 'delete your account' in json.loads(response.data)['message']
        assert client.get(f"/api/v1/users/{alice['id']}").status_code == 200

    def test_blocked_while_sole_organizer(self, client, alice):
        create_tournament(client, 'Spring Cup', alice['id'])

        response = client.delete(f"/api/v1/users/{alice['id']}")
        assert response.status_code == 409
        assert json.loads(response.data)['aggregate_type'] == 'tournament'

    def test_delete_after_handover(self, client, alice, bob):
        team = create_team(client, 'Tigers', alice['id'])
        client.post(f"/api/v1/teams/{team['id']}/members", json={'user_id': bob['id'], 'role': 'COACH'})

        response = client.delete(f"/api/v1/users/{alice['id']}")
        assert response.status_code == 200
        assert 'memberships' in json.loads(response.data)['report']['completed_stages']

        assert client.get(f"/api/v1/users/{alice['id']}").status_code == 404
        team = json.loads(client.get(f"/api/v1/teams/{team['id']}").data)
        assert team['coach_count'] == 1


class TestTournaments:
    """Tests for tournaments, organizers and team registration."""

    def test_create_missing_name(self, client, alice):
        response = client.post('/api/v1/tournaments', json={'created_by': alice['id']})
        assert response.status_code == 400

    def test_organizer_invite_flow(self, client, alice, bob):
        cup = create_tournament(client, 'Spring Cup', alice['id'])

        response = client.post(f"/api/v1/tournaments/{cup['id']}/organizers", json={'email': 'bob@example.com'})
        assert response.status_code == 201
        relation_id = json.loads(response.data)['relation']['id']

        response = client.post(f'/api/v1/organizer-invites/{relation_id}/accept')
        assert response.status_code == 200

        organizers = json.loads(client.get(f"/api/v1/tournaments/{cup['id']}/organizers").data)
        assert organizers['count'] == 2

        response = client.delete(f"/api/v1/tournaments/{cup['id']}/organizers/{alice['id']}")
        assert response.status_code == 200

        response = client.delete(f"/api/v1/tournaments/{cup['id']}/organizers/{bob['id']}")
        assert response.status_code == 409

    def test_organizer_capacity(self, client, alice, bob):
        cup = create_tournament(client, 'Tiny Cup', alice['id'], max_organizers=1)

        response = client.post(f"/api/v1/tournaments/{cup['id']}/organizers", json={'email': 'bob@example.com'})
        assert response.status_code == 400

    def test_team_registration(self, client, alice):
        cup = create_tournament(client, 'Spring Cup', alice['id'], max_size=2)
        team = create_team(client, 'Tigers', alice['id'])

        response = client.post(f"/api/v1/tournaments/{cup['id']}/teams", json={'team_id': team['id']})
        invite_id = json.loads(response.data)['invite']['id']
        client.post(f'/api/v1/tournament-invites/{invite_id}/accept')

        registered = json.loads(client.get(f"/api/v1/tournaments/{cup['id']}/teams?active=true").data)
        assert registered['count'] == 1
        assert json.loads(client.get(f"/api/v1/tournaments/{cup['id']}").data)['team_ids'] == [team['id']]

        response = client.delete(f"/api/v1/tournaments/{cup['id']}/teams/{team['id']}")
        assert response.status_code == 200
        assert json.loads(client.get(f"/api/v1/tournaments/{cup['id']}").data)['team_count'] == 0

    def test_delete_tournament(self, client, alice):
        cup = create_tournament(client, 'Spring Cup', alice['id'])

        response = client.delete(f"/api/v1/tournaments/{cup['id']}")
        assert response.status_code == 200
        assert client.get(f"/api/v1/tournaments/{cup['id']}").status_code == 404

        organized = json.loads(client.get(f"/api/v1/users/{alice['id']}/tournaments").data)
        assert organized['tournament_ids'] == []


class TestSafetyEndpoints:
    """Tests for the safety checks and the cascade retry route."""

    def test_coach_check(self, client, alice):
        team = create_team(client, 'Tigers', alice['id'])

        response = client.get(f"/api/v1/safety/coach?user_id={alice['id']}&team_id={team['id']}")
        data = json.loads(response.data)
        assert data['can_proceed'] is False
        assert data['coach_count'] == 1

    def test_coach_check_requires_user(self, client):
        assert client.get('/api/v1/safety/coach').status_code == 400

    def test_organizer_check(self, client, alice, bob):
        cup = create_tournament(client, 'Spring Cup', alice['id'])

        response = client.get(f"/api/v1/safety/organizer?user_id={bob['id']}&tournament_id={cup['id']}")
        assert json.loads(response.data)['can_proceed'] is True

    def test_all_tournaments_check(self, client, alice):
        create_tournament(client, 'Spring Cup', alice['id'])

        data = json.loads(client.get(f"/api/v1/safety/users/{alice['id']}/tournaments").data)
        assert data['can_proceed'] is False
        assert 'last organizer' in data['message']

    def test_retry_unknown_workflow(self, client):
        response = client.post('/api/v1/cascades/explode/abc/stages/everything/retry')
        assert response.status_code == 400

    def test_retry_stage_on_live_team_refused(self, client, alice):
        team = create_team(client, 'Tigers', alice['id'])

        response = client.post(f"/api/v1/cascades/terminate_team/{team['id']}/stages/memberships/retry")
        assert response.status_code == 400

        members = json.loads(client.get(f"/api/v1/teams/{team['id']}/members").data)
        assert members['count'] == 1

    def test_retry_stage_after_termination(self, client, alice):
        team = create_team(client, 'Tigers', alice['id'])
        client.delete(f"/api/v1/teams/{team['id']}")

        response = client.post(f"/api/v1/cascades/terminate_team/{team['id']}/stages/memberships/retry")
        assert response.status_code == 200
        report = json.loads(response.data)['report']
        assert report['completed_stages'] == ['memberships']
        assert report['deleted']['memberships'] == 0

    def test_retry_account_stage_for_sole_coach_refused(self, client, alice):
        create_team(client, 'Tigers', alice['id'])

        response = client.post(f"/api/v1/cascades/delete_user_account/{alice['id']}/stages/identity/retry")
        assert response.status_code == 400
        assert client.post('/api/v1/auth/login', json={
            'email': 'alice@example.com', 'password': 'secret-password'
        }).status_code == 200


class TestUpdates:
    """Tests for the PATCH routes."""

    def test_update_user(self, client, alice):
        response = client.patch(f"/api/v1/users/{alice['id']}", json={'last_name': 'Smith'})
        assert response.status_code == 200
        assert json.loads(response.data)['user']['full_name'] == 'Alice Smith'

    def test_update_user_email_rejected(self, client, alice):
        response = client.patch(f"/api/v1/users/{alice['id']}", json={'email': 'new@example.com'})
        assert response.status_code == 400

    def test_update_team(self, client, alice):
        team = create_team(client, 'Tigers', alice['id'])

        response = client.patch(f"/api/v1/teams/{team['id']}", json={'name': 'Sabres'})
        assert response.status_code == 200
        assert json.loads(client.get(f"/api/v1/teams/{team['id']}").data)['name'] == 'Sabres'

    def test_update_missing_team(self, client):
        response = client.patch('/api/v1/teams/nope', json={'name': 'Sabres'})
        assert response.status_code == 404

    def test_update_tournament(self, client, alice):
        cup = create_tournament(client, 'Spring Cup', alice['id'])

        response = client.patch(f"/api/v1/tournaments/{cup['id']}", json={'max_organizers': 3})
        assert response.status_code == 200
        assert json.loads(response.data)['tournament']['max_organizers'] == 3
