from integrations.correios.dimensions import (
    DEFAULT_LIMITS,
    SERVICE_LIMITS,
    PackageDims,
    get_limits,
    validate_dimensions,
)


def test_fallbacks_when_nothing_is_given():
    dims = validate_dimensions(None, None, '03298')
    assert dims == PackageDims(weight=500, height=2, width=11, length=16)


def test_zero_request_uses_tenant_default():
    dims = validate_dimensions(
        PackageDims(weight=0, height=0, width=None, length=30),
        PackageDims(weight=800, height=5, width=20, length=25),
        '03220',
    )
    assert dims == PackageDims(weight=800, height=5, width=20, length=30)


def test_values_are_clamped_to_service_limits():
    dims = validate_dimensions(PackageDims(weight=50000, height=150, width=5, length=10), None, '03298')
    assert dims == PackageDims(weight=30000, height=100, width=11, length=16)

    mini = validate_dimensions(PackageDims(weight=1000, height=10, width=30, length=40), None, '04227')
    assert mini == PackageDims(weight=300, height=4, width=16, length=24)


def test_length_absorbs_minimum_sum_shortfall():
    dims = validate_dimensions(PackageDims(weight=100, height=1, width=11, length=16), None, '04227')
    assert dims.height == 1
    assert dims.width == 11
    assert dims.length == 17
    assert dims.height + dims.width + dims.length == SERVICE_LIMITS['04227'].min_sum


def test_unknown_service_uses_default_limits():
    assert get_limits('99999') is DEFAULT_LIMITS
    assert get_limits(None) is DEFAULT_LIMITS
    dims = validate_dimensions(PackageDims(weight=99999), None, '99999')
    assert dims.weight == DEFAULT_LIMITS.max_weight


def test_values_are_rounded_to_integers():
    dims = validate_dimensions(PackageDims(weight=450.6, height=2.5, width=11.4, length=16.2), None, '03298')
    assert dims == PackageDims(weight=451, height=3, width=11, length=16)
    assert all(isinstance(v, int) for v in (dims.weight, dims.height, dims.width, dims.length))


def test_output_within_bounds_for_all_known_services():
    samples = [
        PackageDims(),
        PackageDims(weight=1, height=1, width=1, length=1),
        PackageDims(weight=10**6, height=10**3, width=10**3, length=10**3),
        PackageDims(weight=250, height=3.7, width=12.2, length=18.9),
    ]
    for code, limits in SERVICE_LIMITS.items():
        for requested in samples:
            dims = validate_dimensions(requested, None, code)
            assert limits.min_weight <= dims.weight <= limits.max_weight
            assert limits.min_height <= dims.height <= limits.max_height
            assert limits.min_width <= dims.width <= limits.max_width
            assert limits.min_length <= dims.length <= limits.max_length
            assert dims.height + dims.width + dims.length >= limits.min_sum
