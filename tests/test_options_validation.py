"""Tests for retry options validation with Pydantic."""

import math

import pytest
from pydantic import ValidationError

from again.domain.config import DEFAULT_OPTIONS, RetryOptions, resolve_options
from again.domain.errors import ConfigurationError
from again.domain.models.signal import CancellationSignal


class TestRetryOptionsDefaults:
    """Tests for documented defaults."""

    def test_default_values(self):
        """Test default option values"""
        options = RetryOptions()
        assert options.max_attempts == 5
        assert options.max_elapsed == math.inf
        assert options.min_wait == 0.1
        assert options.max_wait == math.inf
        assert options.growth_factor == 1.0
        assert options.use_linear_growth is True
        assert options.use_jitter is False
        assert options.allow_duplicate_error_logging is False
        assert options.wait_even_if_retry_not_consumed is False
        assert options.concurrency_per_attempt == 1
        assert options.cancellation_signal is None

    def test_default_callbacks(self):
        """Test default callbacks are no-ops / always true"""
        options = RetryOptions()
        assert options.on_catch(None) is None
        assert options.after_wait(None) is None
        assert options.should_consume_retry(None) is True
        assert options.should_retry(None) is True

    def test_options_are_frozen(self):
        """Test resolved options cannot be mutated"""
        options = RetryOptions()
        with pytest.raises(ValidationError):
            options.max_attempts = 10

    def test_unknown_field_rejected(self):
        """Test unknown option names are rejected"""
        with pytest.raises(ValidationError, match="retries"):
            RetryOptions(retries=3)


class TestNumericValidation:
    """Tests for numeric option constraints."""

    def test_max_attempts_zero(self):
        """Test max_attempts must be >= 1"""
        with pytest.raises(ValidationError, match="max_attempts"):
            RetryOptions(max_attempts=0)

    def test_max_attempts_infinite_allowed(self):
        """Test max_attempts accepts infinity"""
        assert RetryOptions(max_attempts=math.inf).max_attempts == math.inf

    def test_max_attempts_must_be_integral(self):
        """Test fractional max_attempts is rejected"""
        with pytest.raises(ValidationError, match="should be an integer"):
            RetryOptions(max_attempts=2.5)

    def test_integral_float_becomes_int(self):
        """Test integral floats are accepted as integers"""
        options = RetryOptions(max_attempts=3.0, concurrency_per_attempt=2.0)
        assert options.max_attempts == 3
        assert isinstance(options.max_attempts, int)
        assert options.concurrency_per_attempt == 2

    def test_nan_rejected(self):
        """Test NaN is rejected"""
        with pytest.raises(ValidationError, match="NaN"):
            RetryOptions(min_wait=math.nan)

    def test_bool_rejected(self):
        """Test booleans are not accepted as numbers"""
        with pytest.raises(ValidationError, match="should be a number"):
            RetryOptions(max_attempts=True)

    def test_string_rejected(self):
        """Test strings are not coerced into numbers"""
        with pytest.raises(ValidationError, match="should be a number"):
            RetryOptions(min_wait="1")

    def test_min_wait_must_be_finite(self):
        """Test min_wait does not accept infinity"""
        with pytest.raises(ValidationError, match="should be finite"):
            RetryOptions(min_wait=math.inf)

    def test_negative_max_elapsed(self):
        """Test max_elapsed must be >= 0"""
        with pytest.raises(ValidationError, match="max_elapsed"):
            RetryOptions(max_elapsed=-1)

    def test_growth_factor_must_be_positive(self):
        """Test growth_factor must be > 0"""
        with pytest.raises(ValidationError, match="should be > 0"):
            RetryOptions(growth_factor=0)

    def test_growth_factor_must_be_finite(self):
        """Test growth_factor does not accept infinity"""
        with pytest.raises(ValidationError, match="growth_factor"):
            RetryOptions(growth_factor=math.inf)

    def test_concurrency_zero(self):
        """Test concurrency_per_attempt must be >= 1"""
        with pytest.raises(ValidationError, match="concurrency_per_attempt"):
            RetryOptions(concurrency_per_attempt=0)

    def test_concurrency_infinite(self):
        """Test concurrency_per_attempt must be finite"""
        with pytest.raises(ValidationError, match="should be finite"):
            RetryOptions(concurrency_per_attempt=math.inf)

    def test_min_wait_greater_than_max_wait(self):
        """Test min_wait cannot exceed a finite max_wait"""
        with pytest.raises(ValidationError, match="'min_wait' cannot be greater than 'max_wait'"):
            RetryOptions(min_wait=2, max_wait=1)

    def test_min_wait_with_infinite_max_wait(self):
        """Test any min_wait is fine when max_wait is infinite"""
        options = RetryOptions(min_wait=1000)
        assert options.max_wait == math.inf

    def test_callback_must_be_callable(self):
        """Test callbacks are validated"""
        with pytest.raises(ValidationError, match="on_catch"):
            RetryOptions(on_catch="not callable")


class TestResolveOptions:
    """Tests for resolve_options."""

    def test_no_arguments_returns_defaults(self):
        """Test resolving nothing returns the shared defaults"""
        assert resolve_options() is DEFAULT_OPTIONS

    def test_instance_returned_unchanged(self):
        """Test a RetryOptions instance without overrides is returned as is"""
        options = RetryOptions(max_attempts=2)
        assert resolve_options(options) is options

    def test_mapping_and_overrides(self):
        """Test keyword overrides win over mapping values"""
        options = resolve_options({"max_attempts": 2, "min_wait": 0.5}, max_attempts=7)
        assert options.max_attempts == 7
        assert options.min_wait == 0.5

    def test_instance_with_overrides_keeps_callbacks(self):
        """Test overriding an instance keeps its other values"""
        signal = CancellationSignal()

        def on_catch(context):
            return None

        base = RetryOptions(on_catch=on_catch, cancellation_signal=signal)
        options = resolve_options(base, max_attempts=9)
        assert options.max_attempts == 9
        assert options.on_catch is on_catch
        assert options.cancellation_signal is signal

    def test_invalid_option_raises_configuration_error(self):
        """Test validation errors are reported as ConfigurationError"""
        with pytest.raises(ConfigurationError, match="max_attempts") as exc_info:
            resolve_options(max_attempts=0)
        assert exc_info.value.field == "max_attempts"
        assert exc_info.value.problems == [("max_attempts", "should be >= 1")]

    def test_multiple_problems_reported(self):
        """Test every offending field is listed"""
        with pytest.raises(ConfigurationError) as exc_info:
            resolve_options(min_wait=-1, concurrency_per_attempt=0)
        fields = [field for field, _ in exc_info.value.problems]
        assert fields == ["min_wait", "concurrency_per_attempt"]

    def test_wait_bounds_reported_on_max_wait(self):
        """Test the cross-field check names max_wait"""
        with pytest.raises(ConfigurationError) as exc_info:
            resolve_options(min_wait=5, max_wait=1)
        assert exc_info.value.field == "max_wait"

    def test_non_mapping_rejected(self):
        """Test options of the wrong type are rejected"""
        with pytest.raises(ConfigurationError, match="mapping"):
            resolve_options([("max_attempts", 1)])
