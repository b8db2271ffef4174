"""Tests for signup, login, password reset and the user directory."""

from datetime import datetime, timedelta

from flask_jwt_extended import decode_token

from models import db, OneTimePassword, User


class TestSignupAndLogin:
    """Test account creation and token issuance."""

    def test_signup_returns_user_without_password(self, api):
        response = api.signup('Alice', 'Alice@Example.com')

        assert response.status_code == 201
        user = response.get_json()['user']
        assert user['name'] == 'Alice'
        assert user['email'] == 'alice@example.com'
        assert 'password' not in user
        assert 'password_hash' not in user

    def test_password_is_stored_hashed(self, app, api):
        api.signup('Alice', 'alice@example.com', 'password123')

        with app.app_context():
            user = User.query.filter_by(email='alice@example.com').one()
            assert user.password_hash != 'password123'
            assert user.password_hash.startswith('$2')

    def test_duplicate_email_fails_and_first_account_still_logs_in(self, api):
        assert api.signup('Alice', 'alice@example.com', 'password123').status_code == 201

        response = api.signup('Other Alice', 'ALICE@example.com', 'different-pass')

        assert response.status_code == 400
        assert response.get_json()['error'] == 'duplicate_email'
        assert api.login('alice@example.com', 'password123').status_code == 200

    def test_signup_requires_all_fields(self, client):
        response = client.post('/api/auth/signup', json={'email': 'alice@example.com'})

        assert response.status_code == 400
        data = response.get_json()
        assert data['error'] == 'validation_error'
        assert 'name' in data['details']
        assert 'password' in data['details']

    def test_signup_rejects_blank_name(self, app, api):
        response = api.signup('   ', 'blank@example.com')

        assert response.status_code == 400
        assert 'name' in response.get_json()['details']
        with app.app_context():
            assert User.query.count() == 0

    def test_signup_requires_json_body(self, client):
        response = client.post('/api/auth/signup', data='not json')

        assert response.status_code == 400

    def test_login_token_carries_id_and_email_and_expires_in_one_hour(self, app, api):
        api.signup('Alice', 'alice@example.com')

        response = api.login('alice@example.com')

        assert response.status_code == 200
        data = response.get_json()
        with app.app_context():
            claims = decode_token(data['token'])
        assert claims['sub'] == str(data['user']['id'])
        assert claims['email'] == 'alice@example.com'
        assert claims['exp'] - claims['iat'] == 3600

    def test_wrong_password_and_unknown_email_look_identical(self, api):
        api.signup('Alice', 'alice@example.com')

        wrong_password = api.login('alice@example.com', 'wrong-password')
        unknown_email = api.login('nobody@example.com', 'password123')

        assert wrong_password.status_code == unknown_email.status_code == 400
        assert wrong_password.get_json() == unknown_email.get_json()
        assert wrong_password.get_json()['error'] == 'invalid_credentials'


class TestAuthenticationRequired:
    """Test token enforcement on protected routes."""

    def test_missing_token(self, client):
        response = client.get('/api/projects')

        assert response.status_code == 401
        assert response.get_json()['error'] == 'authorization_required'

    def test_invalid_token(self, client):
        response = client.get('/api/projects', headers={'Authorization': 'Bearer not-a-token'})

        assert response.status_code == 401

    def test_token_for_deleted_user(self, app, client, alice):
        with app.app_context():
            db.session.delete(db.session.get(User, alice['id']))
            db.session.commit()

        response = client.get('/api/auth/me', headers=alice['headers'])

        assert response.status_code == 401
        assert response.get_json()['error'] == 'authentication_required'

    def test_me(self, client, alice):
        response = client.get('/api/auth/me', headers=alice['headers'])

        assert response.status_code == 200
        assert response.get_json()['email'] == 'alice@example.com'


class TestPasswordReset:
    """Test the forgot-password / verify-otp flow."""

    def _request_code(self, client, mailer, email='alice@example.com'):
        response = client.post('/api/auth/forgot-password', json={'email': email})
        assert response.status_code == 200
        return mailer.sent[-1]['otp']

    def test_unknown_email_gets_the_same_response(self, client, mailer, alice):
        known = client.post('/api/auth/forgot-password', json={'email': alice['email']})
        unknown = client.post('/api/auth/forgot-password', json={'email': 'ghost@example.com'})

        assert known.status_code == unknown.status_code == 200
        assert known.get_json() == unknown.get_json()
        assert [m['to'] for m in mailer.sent] == [alice['email']]

    def test_code_is_six_digits_and_expires_in_ten_minutes(self, app, client, mailer, alice):
        code = self._request_code(client, mailer)

        assert len(code) == 6 and code.isdigit()
        assert mailer.sent[-1]['expires_minutes'] == 10
        with app.app_context():
            record = OneTimePassword.query.filter_by(email=alice['email']).one()
            lifetime = record.expires_at - record.created_at
            assert lifetime == timedelta(minutes=10)

    def test_verify_resets_password(self, api, client, mailer, alice):
        code = self._request_code(client, mailer)

        response = client.post('/api/auth/verify-otp', json={
            'email': alice['email'], 'otp': code, 'newPassword': 'brand-new-pass'
        })

        assert response.status_code == 200
        assert api.login(alice['email'], 'password123').status_code == 400
        assert api.login(alice['email'], 'brand-new-pass').status_code == 200

    def test_code_is_single_use(self, client, mailer, alice):
        code = self._request_code(client, mailer)
        body = {'email': alice['email'], 'otp': code, 'newPassword': 'brand-new-pass'}

        assert client.post('/api/auth/verify-otp', json=body).status_code == 200

        response = client.post('/api/auth/verify-otp', json=body)
        assert response.status_code == 400
        assert response.get_json()['error'] == 'invalid_or_expired_code'

    def test_expired_code_is_rejected(self, app, api, client, mailer, alice):
        code = self._request_code(client, mailer)
        with app.app_context():
            record = OneTimePassword.query.filter_by(email=alice['email']).one()
            record.expires_at = datetime.utcnow() - timedelta(seconds=1)
            db.session.commit()

        response = client.post('/api/auth/verify-otp', json={
            'email': alice['email'], 'otp': code, 'newPassword': 'brand-new-pass'
        })

        assert response.status_code == 400
        assert api.login(alice['email'], 'password123').status_code == 200

    def test_wrong_code_is_rejected(self, client, mailer, alice):
        code = self._request_code(client, mailer)
        wrong = '000000' if code != '000000' else '111111'

        response = client.post('/api/auth/verify-otp', json={
            'email': alice['email'], 'otp': wrong, 'newPassword': 'brand-new-pass'
        })

        assert response.status_code == 400

    def test_new_request_replaces_previous_code(self, app, client, mailer, alice):
        self._request_code(client, mailer)
        latest = self._request_code(client, mailer)

        with app.app_context():
            records = OneTimePassword.query.filter_by(email=alice['email']).all()
            assert [r.code for r in records] == [latest]

    def test_mail_failure_is_not_reported_to_caller(self, client, mailer, alice):
        def broken_send(*args, **kwargs):
            raise OSError('smtp down')

        mailer.send_otp_email = broken_send

        response = client.post('/api/auth/forgot-password', json={'email': alice['email']})

        assert response.status_code == 200

    def test_purge_expired_otps(self, app, alice):
        now = datetime.utcnow()
        with app.app_context():
            db.session.add_all([
                OneTimePassword(email='a@example.com', code='123456', expires_at=now - timedelta(minutes=1)),
                OneTimePassword(email='b@example.com', code='654321', expires_at=now + timedelta(minutes=5)),
            ])
            db.session.commit()

            deleted = app.extensions['credential_service'].purge_expired_otps()

            assert deleted == 1
            assert [r.email for r in OneTimePassword.query.all()] == ['b@example.com']

    def test_purge_cli_command(self, app):
        with app.app_context():
            db.session.add(OneTimePassword(
                email='a@example.com', code='123456',
                expires_at=datetime.utcnow() - timedelta(minutes=1)
            ))
            db.session.commit()

        result = app.test_cli_runner().invoke(args=['purge-expired-otps'])

        assert 'Purged 1 expired OTP records' in result.output


class TestUserDirectory:
    """Test the lookup endpoints used by assignment UIs."""

    def test_list_users(self, client, alice, bob):
        response = client.get('/api/auth/users', headers=alice['headers'])

        assert response.status_code == 200
        assert {u['email'] for u in response.get_json()} == {alice['email'], bob['email']}

    def test_search_matches_name_or_email_case_insensitively(self, client, make_user, alice):
        make_user('Bobby Tables', 'bobby@example.com')
        make_user('Carol', 'carol@bobcorp.io')

        response = client.get('/api/auth/users/search?q=BOB', headers=alice['headers'])

        assert response.status_code == 200
        assert {u['email'] for u in response.get_json()} == {'bobby@example.com', 'carol@bobcorp.io'}

    def test_search_requires_query(self, client, alice):
        response = client.get('/api/auth/users/search', headers=alice['headers'])

        assert response.status_code == 400

    def test_find_by_email(self, client, alice, bob):
        response = client.get('/api/auth/users/find-by-email?email=BOB@example.com', headers=alice['headers'])

        assert response.status_code == 200
        assert response.get_json()['id'] == bob['id']

    def test_find_by_email_not_found(self, client, alice):
        response = client.get('/api/auth/users/find-by-email?email=ghost@example.com', headers=alice['headers'])

        assert response.status_code == 404

    def test_find_by_name_is_exact_but_case_insensitive(self, client, make_user, alice):
        make_user('Bob', 'bob1@example.com')
        make_user('Bob', 'bob2@example.com')
        make_user('Bobby', 'bobby@example.com')

        response = client.get('/api/auth/users/find-by-name?name=bob', headers=alice['headers'])

        assert response.status_code == 200
        assert {u['email'] for u in response.get_json()} == {'bob1@example.com', 'bob2@example.com'}

    def test_directory_requires_token(self, client):
        assert client.get('/api/auth/users').status_code == 401
