import pytest
from fastapi.testclient import TestClient

from clinic_api.database import get_db
from clinic_api.main import app


@pytest.fixture
def client(session_factory):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


DOCTOR = {
    'name': 'Dr. Grey',
    'email': 'Grey@Clinic.com',
    'password': 'secret123',
    'role': 'doctor',
    'specialization': 'Cardiology',
    'phone': '+15555550100',
    'imgLink': 'https://img.example.test/grey.png',
}
PATIENT = {'name': 'Pat Jones', 'email': 'pat@example.com', 'password': 'secret123', 'role': 'patient'}


def auth_headers(response) -> dict:
    return {'Authorization': f"Bearer {response.json()['data']['token']}"}


def test_register_returns_user_and_token(client) -> None:
    response = client.post('/auth/register', json=DOCTOR)

    assert response.status_code == 201
    body = response.json()
    assert body['status'] == 'success'
    user = body['data']['user']
    assert user['email'] == 'grey@clinic.com'
    assert user['role'] == 'doctor'
    assert user['specialization'] == 'Cardiology'
    assert user['imgLink'] == 'https://img.example.test/grey.png'
    assert 'password' not in user
    assert 'hashedPassword' not in user
    assert body['data']['token']


def test_register_doctor_requires_specialization(client) -> None:
    response = client.post('/auth/register', json={**DOCTOR, 'specialization': '  '})

    assert response.status_code == 400
    assert response.json() == {'message': 'Specialization is required for doctors'}


@pytest.mark.parametrize(
    ('overrides', 'field'),
    [
        ({'email': 'not-an-email'}, 'email'),
        ({'password': '123'}, 'password'),
        ({'name': 'Al'}, 'name'),
        ({'role': 'nurse'}, 'role'),
    ],
)
def test_register_validates_fields(client, overrides: dict, field: str) -> None:
    response = client.post('/auth/register', json={**PATIENT, **overrides})

    assert response.status_code == 400
    assert response.json()['message'].startswith(field)


def test_register_rejects_duplicate_email(client) -> None:
    assert client.post('/auth/register', json=PATIENT).status_code == 201

    response = client.post('/auth/register', json={**PATIENT, 'email': 'PAT@example.com'})

    assert response.status_code == 409
    assert response.json() == {'message': 'Email already registered'}


def test_login_checks_credentials(client) -> None:
    client.post('/auth/register', json=PATIENT)

    success = client.post('/auth/login', json={'email': ' PAT@example.com ', 'password': 'secret123'})
    failure = client.post('/auth/login', json={'email': 'pat@example.com', 'password': 'wrong-one'})
    missing = client.post('/auth/login', json={'email': 'pat@example.com'})

    assert success.status_code == 200
    assert success.json()['data']['user']['email'] == 'pat@example.com'
    assert failure.status_code == 401
    assert failure.json() == {'message': 'Invalid email or password'}
    assert missing.status_code == 400


def test_doctors_listing_is_public(client) -> None:
    client.post('/auth/register', json=DOCTOR)
    client.post('/auth/register', json=PATIENT)

    response = client.get('/auth/doctors')

    assert response.status_code == 200
    assert response.json()['results'] == 1
    assert response.json()['doctors'][0]['name'] == 'Dr. Grey'


def test_me_returns_own_profile(client) -> None:
    headers = auth_headers(client.post('/auth/register', json=PATIENT))

    response = client.get('/auth/me', headers=headers)

    assert response.status_code == 200
    assert response.json()['user']['email'] == 'pat@example.com'
    assert client.get('/auth/me').status_code == 401


def test_user_directory_is_doctor_only(client) -> None:
    doctor = client.post('/auth/register', json=DOCTOR)
    patient = client.post('/auth/register', json=PATIENT)
    patient_id = patient.json()['data']['user']['id']

    as_doctor = client.get('/auth/users', headers=auth_headers(doctor))
    as_patient = client.get('/auth/users', headers=auth_headers(patient))
    one_user = client.get(f'/auth/users/{patient_id}', headers=auth_headers(doctor))
    missing = client.get('/auth/users/999', headers=auth_headers(doctor))

    assert as_doctor.json()['results'] == 2
    assert as_patient.status_code == 403
    assert one_user.json()['user']['id'] == patient_id
    assert missing.status_code == 404
    assert missing.json() == {'message': 'User not found'}


def test_users_can_only_update_themselves(client) -> None:
    doctor = client.post('/auth/register', json=DOCTOR)
    patient = client.post('/auth/register', json=PATIENT)
    patient_id = patient.json()['data']['user']['id']

    own = client.put(
        f'/auth/users/{patient_id}',
        json={'name': 'Patricia Jones', 'phone': '+15555550111'},
        headers=auth_headers(patient),
    )
    foreign = client.put(f'/auth/users/{patient_id}', json={'name': 'Hijacked'}, headers=auth_headers(doctor))

    assert own.status_code == 200
    assert own.json()['user']['name'] == 'Patricia Jones'
    assert own.json()['user']['phone'] == '+15555550111'
    assert foreign.status_code == 403
