"""
Tests for user agent classification.
"""
import pytest
from hypothesis import given, settings, strategies as st, HealthCheck

from apps.rbac.user_agent import parse_user_agent

CHROME_MAC = (
    'Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 '
    '(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36'
)
EDGE_WINDOWS = (
    'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 '
    '(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36 Edg/120.0.0.0'
)
FIREFOX_LINUX = 'Mozilla/5.0 (X11; Linux x86_64; rv:121.0) Gecko/20100101 Firefox/121.0'
SAFARI_IPAD = (
    'Mozilla/5.0 (iPad; CPU OS 17_1 like Mac OS X) AppleWebKit/605.1.15 '
    '(KHTML, like Gecko) Version/17.1 Mobile/15E148 Safari/604.1'
)
CHROME_ANDROID = (
    'Mozilla/5.0 (Linux; Android 14; Pixel 8) AppleWebKit/537.36 '
    '(KHTML, like Gecko) Chrome/120.0.0.0 Mobile Safari/537.36'
)


@pytest.mark.parametrize('user_agent, expected', [
    (CHROME_MAC, {'browser': 'Chrome', 'os': 'macOS', 'device': 'Desktop'}),
    (EDGE_WINDOWS, {'browser': 'Edge', 'os': 'Windows', 'device': 'Desktop'}),
    (FIREFOX_LINUX, {'browser': 'Firefox', 'os': 'Linux', 'device': 'Desktop'}),
    (SAFARI_IPAD, {'browser': 'Safari', 'os': 'iOS', 'device': 'Tablet'}),
    (CHROME_ANDROID, {'browser': 'Chrome', 'os': 'Android', 'device': 'Mobile'}),
    ('curl/8.4.0', {'browser': 'Unknown', 'os': 'Unknown', 'device': 'Desktop'}),
    (None, {'browser': 'Unknown', 'os': 'Unknown', 'device': 'Desktop'}),
    ('', {'browser': 'Unknown', 'os': 'Unknown', 'device': 'Desktop'}),
])
def test_parse_user_agent(user_agent, expected):
    assert parse_user_agent(user_agent) == expected


@settings(max_examples=100, deadline=None, suppress_health_check=[HealthCheck.function_scoped_fixture])
@given(st.text(max_size=300))
def test_parse_is_total(user_agent):
    """Any string classifies into the known labels."""
    result = parse_user_agent(user_agent)

    assert set(result) == {'browser', 'os', 'device'}
    assert result['browser'] in {'Firefox', 'Edge', 'Chrome', 'Safari', 'Opera', 'Unknown'}
    assert result['os'] in {'Android', 'iOS', 'Windows', 'macOS', 'Linux', 'Unknown'}
    assert result['device'] in {'Tablet', 'Mobile', 'Desktop'}


@settings(max_examples=100, deadline=None, suppress_health_check=[HealthCheck.function_scoped_fixture])
@given(st.text(alphabet=st.characters(max_codepoint=127), max_size=100))
def test_parse_is_case_insensitive(user_agent):
    assert parse_user_agent(user_agent.upper()) == parse_user_agent(user_agent.lower())
