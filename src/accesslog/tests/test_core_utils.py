import pytest

from accesslog.core.clientip import client_ip_from_headers
from accesslog.core.errors import ValidationFailed
from accesslog.core.keys import (
    constant_time_equals,
    generate_api_key,
    key_fingerprint,
    looks_like_api_key,
)
from accesslog.core.useragent import parse_user_agent
from accesslog.models.custom_params import MAX_CUSTOM_PARAMS_BYTES, CustomParameters
from accesslog.services.tracking_service import bound_custom_params, pixel_custom_params

from conftest import UA_CHROME


def test_generated_keys_are_url_safe_and_distinct():
    a, b = generate_api_key(), generate_api_key()
    assert a != b
    # 32 bytes of entropy
    assert len(a) >= 43
    assert looks_like_api_key(a)
    assert not looks_like_api_key("garbage")
    assert not looks_like_api_key("x" * 20 + " " + "y" * 20)


def test_key_fingerprint_does_not_reveal_key():
    key = generate_api_key()
    fp = key_fingerprint(key)
    assert len(fp) == 12
    assert fp not in key
    assert fp == key_fingerprint(key)


def test_constant_time_equals():
    assert constant_time_equals("abc", "abc")
    assert not constant_time_equals("abc", "abd")


@pytest.mark.parametrize(
    "xff, peer, expected",
    [
        ("203.0.113.7, 10.0.0.1", "127.0.0.1", "203.0.113.7"),
        ("  198.51.100.2 ", "127.0.0.1", "198.51.100.2"),
        ("2001:db8::1", "127.0.0.1", "2001:db8::1"),
        ("203.0.113.7:8080", None, "203.0.113.7"),
        ("not-an-ip, 203.0.113.7", "127.0.0.1", "127.0.0.1"),
        (None, "192.0.2.10", "192.0.2.10"),
        ("", None, "unknown"),
    ],
)
def test_client_ip_resolution(xff, peer, expected):
    assert client_ip_from_headers(xff, peer) == expected


@pytest.mark.parametrize(
    "ua, device, browser, os",
    [
        (UA_CHROME, "desktop", "Chrome", "Windows"),
        (
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) "
            "Chrome/120.0.0.0 Safari/537.36 Edg/120.0.0.0",
            "desktop",
            "Edge",
            "Windows",
        ),
        (
            "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 "
            "(KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1",
            "mobile",
            "Safari",
            "iOS",
        ),
        (
            "Mozilla/5.0 (iPad; CPU OS 17_0 like Mac OS X) AppleWebKit/605.1.15 (KHTML, like Gecko)",
            "tablet",
            "Unknown",
            "iOS",
        ),
        (
            "Mozilla/5.0 (Macintosh; Intel Mac OS X 14_0; rv:121.0) Gecko/20100101 Firefox/121.0",
            "desktop",
            "Firefox",
            "macOS",
        ),
        (
            "Mozilla/5.0 (Linux; Android 14) AppleWebKit/537.36 (KHTML, like Gecko) "
            "Chrome/120.0 Mobile Safari/537.36",
            "mobile",
            "Chrome",
            "Android",
        ),
        (
            "Mozilla/5.0 (compatible; Googlebot/2.1; +http://www.google.com/bot.html)",
            "bot",
            "Unknown",
            "Unknown",
        ),
        ("Opera/9.80 (X11; Linux x86_64) Presto/2.12.388", "desktop", "Opera", "Linux"),
    ],
)
def test_user_agent_parsing(ua, device, browser, os):
    info = parse_user_agent(ua)
    assert (info.device_type, info.browser, info.os) == (device, browser, os)


def test_empty_user_agent_derives_nothing():
    info = parse_user_agent("")
    assert (info.device_type, info.browser, info.os) == ("", "", "")


def test_custom_params_size_bound():
    ok = bound_custom_params({"plan": "pro", "n": 3})
    assert ok.to_dict() == {"plan": "pro", "n": 3}
    assert ok.size == len('{"plan":"pro","n":3}')

    with pytest.raises(ValidationFailed) as exc:
        bound_custom_params({"blob": "x" * MAX_CUSTOM_PARAMS_BYTES})
    assert exc.value.details["max_size"] == MAX_CUSTOM_PARAMS_BYTES


def test_custom_params_decode_lazily():
    params = CustomParameters.from_json('{"a": [1, 2]}')
    assert params.encoded == '{"a": [1, 2]}'
    assert params.to_dict() == {"a": [1, 2]}
    assert params == {"a": [1, 2]}
    assert not CustomParameters()


def test_pixel_custom_params_skip_reserved_and_collect_repeats():
    query = [
        ("app_id", "a1"),
        ("session_id", "s"),
        ("url", "/p"),
        ("campaign", "spring"),
        ("tag", "x"),
        ("tag", "y"),
        ("tag", "z"),
    ]
    assert pixel_custom_params(query) == {"campaign": "spring", "tag": ["x", "y", "z"]}
