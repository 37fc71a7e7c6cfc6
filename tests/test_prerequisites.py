"""
등록 사전 조건 검증 테스트
"""

import pytest
import requests
from mesh_vpn_agent import prerequisites as prereq_module
from mesh_vpn_agent.config import ManagementConfig
from mesh_vpn_agent.models import ErrorKind
from mesh_vpn_agent.prerequisites import PrerequisiteValidator, credential_format

VALID_UUID = "A1B2C3D4-E5F6-4789-ABCD-0123456789AB"
ENDPOINT = "https://netbird.example.com:33073"


class FakeResponse:
    def __init__(self, status_code):
        self.status_code = status_code


class FakeFirewall:
    def __init__(self, allowed=True):
        self.allowed = allowed

    def check_egress(self):
        return self.allowed, "stub"


def respond(monkeypatch, status_code=None, error=None):
    def fake_get(url, **kwargs):
        if error:
            raise error
        return FakeResponse(status_code)

    monkeypatch.setattr(prereq_module.requests, "get", fake_get)


def make_validator(handle, min_free_mb=0, firewall_allowed=True):
    return PrerequisiteValidator(handle, ManagementConfig(), min_free_mb=min_free_mb,
                                 firewall=FakeFirewall(firewall_allowed))


@pytest.mark.parametrize("credential,expected", [
    (VALID_UUID, "uuid"),
    ("nbp_" + "x" * 36, "prefixed"),
    ("tskey-auth-" + "k" * 30, "prefixed"),
    ("Zm9vYmFyYmF6cXV4MTIzNDU2Nzg5MGFiY2RlZg", "opaque"),
    ("not-a-real-key", None),
    ("", None),
    ("a" * 20 + " " + "b" * 20, None),
])
def test_credential_format(credential, expected):
    """자격 증명 형식 판별"""
    assert credential_format(credential, ["nbp", "tskey"], 32) == expected


def test_not_a_real_key_fails_critical(handle, monkeypatch):
    """'not-a-real-key'는 치명적 실패"""
    respond(monkeypatch, 404)
    validator = make_validator(handle)
    report = validator.validate("not-a-real-key", ENDPOINT)

    assert report.passed == False
    assert report.get("ValidCredential").passed == False
    assert report.get("EndpointReachable").passed == True
    assert PrerequisiteValidator.failure_kind(report) == ErrorKind.INVALID_CREDENTIAL


@pytest.mark.parametrize("status_code,reachable", [
    (200, True), (401, True), (404, True), (499, True), (500, False), (503, False),
])
def test_endpoint_status_codes(handle, monkeypatch, status_code, reachable):
    """5xx 미만 응답은 연결 가능"""
    respond(monkeypatch, status_code)
    ok, msg = make_validator(handle).check_endpoint(ENDPOINT)
    assert ok == reachable


@pytest.mark.parametrize("error", [
    requests.exceptions.ConnectionError("refused"),
    requests.exceptions.Timeout("slow"),
    requests.exceptions.SSLError("bad cert"),
])
def test_endpoint_errors(handle, monkeypatch, error):
    """연결 오류는 연결 불가"""
    respond(monkeypatch, error=error)
    ok, msg = make_validator(handle).check_endpoint(ENDPOINT)
    assert ok == False


def test_unreachable_endpoint_maps_to_network_error(handle, monkeypatch):
    respond(monkeypatch, 502)
    report = make_validator(handle).validate(VALID_UUID, ENDPOINT)
    assert report.passed == False
    assert PrerequisiteValidator.failure_kind(report) == ErrorKind.NETWORK_ERROR


def test_no_prior_registration_is_not_conflict(handle):
    ok, msg = make_validator(handle).check_conflict(ENDPOINT)
    assert ok == True


def test_same_endpoint_is_not_conflict(handle):
    with open(handle.config_path, "w") as f:
        f.write('{"ManagementURL": {"Scheme": "https", "Host": "netbird.example.com:33073"}}')
    ok, msg = make_validator(handle).check_conflict(ENDPOINT)
    assert ok == True


def test_different_endpoint_is_conflict(handle, monkeypatch):
    with open(handle.config_path, "w") as f:
        f.write('{"ManagementURL": {"Scheme": "https", "Host": "api.netbird.io:443"}}')
    respond(monkeypatch, 200)
    validator = make_validator(handle)

    ok, msg = validator.check_conflict(ENDPOINT)
    assert ok == False

    report = validator.validate(VALID_UUID, ENDPOINT)
    assert report.passed == False
    assert PrerequisiteValidator.failure_kind(report) == ErrorKind.UNKNOWN

    # 강제 초기화 시에는 충돌 점검 생략
    report = validator.validate(VALID_UUID, ENDPOINT, skip_conflict=True)
    assert report.passed == True
    assert report.get("NoConflictingRegistration") is None


def test_advisory_failures_do_not_block(handle, monkeypatch):
    """저장 공간/방화벽은 권고 점검"""
    respond(monkeypatch, 200)
    validator = make_validator(handle, min_free_mb=10 ** 12, firewall_allowed=False)
    report = validator.validate(VALID_UUID, ENDPOINT)

    assert report.passed == True
    names = [check.name for check in report.advisory_failures()]
    assert names == ["StorageHeadroom", "EgressAllowed"]


def test_critical_set_is_configurable(handle, monkeypatch):
    """치명적 점검 목록은 설정 가능"""
    respond(monkeypatch, 503)
    validator = PrerequisiteValidator(handle, ManagementConfig(), critical_checks=["ValidCredential"],
                                      min_free_mb=0, firewall=FakeFirewall())
    report = validator.validate(VALID_UUID, ENDPOINT)
    assert report.passed == True
    assert report.get("EndpointReachable").critical == False
