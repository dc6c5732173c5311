"""Statistical analysis for two-variant conversion tests.

Three independent methods decide whether the difference between A and B
is reliable:
- Two-proportion Z-test (frequentist significance)
- Bayesian posterior comparison (Beta-Binomial, Monte Carlo)
- Sequential Probability Ratio Test (continuous monitoring)

Every function here is pure. The Bayesian simulation draws from a
PosteriorSampler built on an injected random.Random, so a fixed seed
reproduces the exact same draws.
"""
import math
import random
from dataclasses import dataclass, asdict
from typing import List, Optional

# Abramowitz & Stegun 7.1.26 (max error 1.5e-7)
_ERF_A1 = 0.254829592
_ERF_A2 = -0.284496736
_ERF_A3 = 1.421413741
_ERF_A4 = -1.453152027
_ERF_A5 = 1.061405429
_ERF_P = 0.3275911

# Abramowitz & Stegun 26.2.23 rational approximation
_INV_C = (2.515517, 0.802853, 0.010328)
_INV_D = (1.432788, 0.189269, 0.001308)

# Jeffreys prior Beta(0.5, 0.5)
JEFFREYS_PRIOR = 0.5
DEFAULT_SIMULATIONS = 10000

SPRT_CONTINUE = "continue"
SPRT_A_WINS = "stop_A_wins"
SPRT_B_WINS = "stop_B_wins"


@dataclass(frozen=True)
class Interval:
    """Closed interval [lower, upper]."""
    lower: float
    upper: float


@dataclass(frozen=True)
class SignificanceResult:
    """Outcome of a two-proportion Z-test."""
    conversion_rate_a: float
    conversion_rate_b: float
    improvement: float
    improvement_percent: float
    confidence_level: float
    is_significant: bool
    p_value: float
    z_score: float
    critical_z: float
    margin_of_error: float
    sample_size_a: int
    sample_size_b: int
    conversions_a: int
    conversions_b: int

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class BayesianResult(SignificanceResult):
    """Z-test outcome extended with posterior comparison."""
    probability_b_beats_a: float
    expected_loss: float
    credible_interval: Interval


@dataclass(frozen=True)
class SequentialResult:
    """SPRT decision and the statistic it was based on."""
    should_stop: bool
    decision: str
    log_likelihood_ratio: float
    upper_boundary: float
    lower_boundary: float

    def to_dict(self) -> dict:
        return asdict(self)


def _check_confidence_level(confidence_level: float) -> None:
    if not 0 < confidence_level < 100:
        raise ValueError(
            f"confidence_level must be between 0 and 100 (exclusive), got {confidence_level}"
        )


def _check_counts(conversions: int, visits: int, variant: str) -> None:
    if conversions < 0 or visits < 0:
        raise ValueError(f"Counts for variant {variant} must be non-negative")
    if conversions > visits:
        raise ValueError(f"Conversions for variant {variant} cannot exceed visits")


def erf(x: float) -> float:
    """Error function (Abramowitz & Stegun polynomial approximation)."""
    sign = 1.0 if x >= 0 else -1.0
    x = abs(x)

    t = 1.0 / (1.0 + _ERF_P * x)
    y = 1.0 - (((((_ERF_A5 * t + _ERF_A4) * t) + _ERF_A3) * t + _ERF_A2) * t + _ERF_A1) * t * math.exp(-x * x)

    return sign * y


def normal_cdf(x: float) -> float:
    """Standard normal cumulative distribution function."""
    return 0.5 * (1.0 + erf(x / math.sqrt(2.0)))


def inverse_normal_cdf(p: float) -> float:
    """
    Inverse standard normal CDF.

    Args:
        p: Probability in the open interval (0, 1)

    Returns:
        z such that normal_cdf(z) is approximately p

    Raises:
        ValueError: If p is outside (0, 1)
    """
    if p <= 0 or p >= 1:
        raise ValueError("Probability must be between 0 and 1")

    c0, c1, c2 = _INV_C
    d0, d1, d2 = _INV_D

    if p > 0.5:
        t = math.sqrt(-2.0 * math.log(1.0 - p))
        return t - (c0 + c1 * t + c2 * t * t) / (1.0 + d0 * t + d1 * t * t + d2 * t * t * t)

    t = math.sqrt(-2.0 * math.log(p))
    return -(t - (c0 + c1 * t + c2 * t * t) / (1.0 + d0 * t + d1 * t * t + d2 * t * t * t))


def critical_z(confidence_level: float) -> float:
    """Two-tailed critical z value for a confidence level in percent."""
    _check_confidence_level(confidence_level)
    alpha = (100 - confidence_level) / 100
    return inverse_normal_cdf(1 - alpha / 2)


def calculate_significance(
    conversions_a: int,
    visits_a: int,
    conversions_b: int,
    visits_b: int,
    confidence_level: float = 95
) -> SignificanceResult:
    """
    Two-proportion Z-test of B against A.

    Uses the pooled standard error under the null hypothesis of equal rates
    and a two-tailed p-value. An arm with no visits, or a pooled rate of
    exactly 0 or 1, yields z = 0 (no evidence either way).

    Args:
        conversions_a: Conversions in variant A
        visits_a: Visits in variant A
        conversions_b: Conversions in variant B
        visits_b: Visits in variant B
        confidence_level: Required confidence in percent, e.g. 95

    Returns:
        SignificanceResult

    Raises:
        ValueError: If confidence_level is outside (0, 100) or counts are invalid

    Example:
        >>> result = calculate_significance(100, 1000, 150, 1000, 95)
        >>> result.is_significant, round(result.improvement_percent)
        (True, 50)
    """
    _check_counts(conversions_a, visits_a, "A")
    _check_counts(conversions_b, visits_b, "B")
    z_crit = critical_z(confidence_level)

    rate_a = conversions_a / visits_a if visits_a else 0.0
    rate_b = conversions_b / visits_b if visits_b else 0.0

    z_score = 0.0
    margin_of_error = 0.0
    if visits_a and visits_b:
        pooled = (conversions_a + conversions_b) / (visits_a + visits_b)
        standard_error = math.sqrt(pooled * (1 - pooled) * (1 / visits_a + 1 / visits_b))
        if standard_error > 0:
            z_score = (rate_b - rate_a) / standard_error

        margin_of_error = z_crit * math.sqrt(
            (rate_b * (1 - rate_b) / visits_b) + (rate_a * (1 - rate_a) / visits_a)
        )

    p_value = 2 * (1 - normal_cdf(abs(z_score)))

    improvement_percent = ((rate_b / rate_a) - 1) * 100 if rate_a > 0 else 0.0
    if not math.isfinite(improvement_percent):
        improvement_percent = 0.0

    return SignificanceResult(
        conversion_rate_a=rate_a,
        conversion_rate_b=rate_b,
        improvement=rate_b - rate_a,
        improvement_percent=improvement_percent,
        confidence_level=confidence_level,
        is_significant=abs(z_score) > z_crit,
        p_value=p_value,
        z_score=z_score,
        critical_z=z_crit,
        margin_of_error=margin_of_error,
        sample_size_a=visits_a,
        sample_size_b=visits_b,
        conversions_a=conversions_a,
        conversions_b=conversions_b,
    )


class PosteriorSampler:
    """
    Random variates for posterior simulation.

    Normals come from Box-Muller, which produces two independent values per
    call; the second is cached and handed out by the next call. Gammas use
    Marsaglia & Tsang, and Betas are a ratio of two Gammas.

    A sampler is stateful (the normal cache and the PRNG), so share one
    only within a single analysis.
    """

    def __init__(self, rng: Optional[random.Random] = None, seed: Optional[int] = None):
        self.rng = rng if rng is not None else random.Random(seed)
        self._normal_cache: Optional[float] = None

    def _open_uniform(self) -> float:
        # (0, 1], safe for log()
        return 1.0 - self.rng.random()

    def normal(self) -> float:
        """Standard normal variate."""
        if self._normal_cache is not None:
            result = self._normal_cache
            self._normal_cache = None
            return result

        u = self._open_uniform()
        v = self.rng.random()
        radius = math.sqrt(-2.0 * math.log(u))
        self._normal_cache = radius * math.sin(2.0 * math.pi * v)
        return radius * math.cos(2.0 * math.pi * v)

    def gamma(self, shape: float) -> float:
        """Gamma(shape, 1) variate."""
        if shape <= 0:
            raise ValueError("Gamma shape must be positive")

        if shape < 1:
            return self.gamma(shape + 1) * self.rng.random() ** (1.0 / shape)

        d = shape - 1.0 / 3.0
        c = 1.0 / math.sqrt(9.0 * d)

        while True:
            x = self.normal()
            v = 1.0 + c * x
            while v <= 0:
                x = self.normal()
                v = 1.0 + c * x

            v = v * v * v
            u = self._open_uniform()

            if u < 1 - 0.331 * x * x * x * x:
                return d * v

            if math.log(u) < 0.5 * x * x + d * (1 - v + math.log(v)):
                return d * v

    def beta(self, alpha: float, beta: float) -> float:
        """Beta(alpha, beta) variate."""
        gamma_alpha = self.gamma(alpha)
        gamma_beta = self.gamma(beta)
        return gamma_alpha / (gamma_alpha + gamma_beta)


def posterior_credible_interval(
    alpha_a: float,
    beta_a: float,
    alpha_b: float,
    beta_b: float,
    confidence_level: float = 95,
    simulations: int = DEFAULT_SIMULATIONS,
    sampler: Optional[PosteriorSampler] = None
) -> Interval:
    """
    Credible interval for rate_B - rate_A from paired posterior draws.

    Reads the (alpha/2) and (1 - alpha/2) order statistics of the sorted
    differences.
    """
    _check_confidence_level(confidence_level)
    if simulations <= 0:
        raise ValueError("simulations must be positive")
    sampler = sampler or PosteriorSampler()

    differences: List[float] = []
    for _ in range(simulations):
        sample_a = sampler.beta(alpha_a, beta_a)
        sample_b = sampler.beta(alpha_b, beta_b)
        differences.append(sample_b - sample_a)

    differences.sort()

    alpha = (100 - confidence_level) / 100
    lower_index = int(math.floor((alpha / 2) * simulations))
    upper_index = min(int(math.floor((1 - alpha / 2) * simulations)), simulations - 1)

    return Interval(lower=differences[lower_index], upper=differences[upper_index])


def calculate_bayesian_analysis(
    conversions_a: int,
    visits_a: int,
    conversions_b: int,
    visits_b: int,
    confidence_level: float = 95,
    simulations: int = DEFAULT_SIMULATIONS,
    sampler: Optional[PosteriorSampler] = None
) -> BayesianResult:
    """
    Bayesian comparison of two conversion rates.

    Each rate gets a Beta posterior under the Jeffreys prior. The first
    Monte Carlo pass counts how often B's draw beats A's and accumulates
    the loss of choosing B on the draws where it does not (expected loss is
    that sum over all draws). A second pass of the same size yields the
    credible interval of the difference.

    This is CPU-bound (2 x simulations pairs of Beta draws); callers on a
    request path should run it in a worker thread with a timeout.

    Args:
        conversions_a: Conversions in variant A
        visits_a: Visits in variant A
        conversions_b: Conversions in variant B
        visits_b: Visits in variant B
        confidence_level: Credible mass in percent, e.g. 95
        simulations: Draws per pass
        sampler: Source of randomness (seed it for reproducible output)

    Returns:
        BayesianResult with the Z-test fields plus probability_b_beats_a,
        expected_loss and credible_interval
    """
    frequentist = calculate_significance(
        conversions_a, visits_a, conversions_b, visits_b, confidence_level
    )
    if simulations <= 0:
        raise ValueError("simulations must be positive")
    sampler = sampler or PosteriorSampler()

    alpha_a = conversions_a + JEFFREYS_PRIOR
    beta_a = visits_a - conversions_a + JEFFREYS_PRIOR
    alpha_b = conversions_b + JEFFREYS_PRIOR
    beta_b = visits_b - conversions_b + JEFFREYS_PRIOR

    b_beats_a = 0
    loss_sum = 0.0
    for _ in range(simulations):
        sample_a = sampler.beta(alpha_a, beta_a)
        sample_b = sampler.beta(alpha_b, beta_b)

        if sample_b > sample_a:
            b_beats_a += 1
        else:
            loss_sum += sample_a - sample_b

    credible_interval = posterior_credible_interval(
        alpha_a, beta_a, alpha_b, beta_b, confidence_level, simulations, sampler
    )

    return BayesianResult(
        **{key: getattr(frequentist, key) for key in SignificanceResult.__dataclass_fields__},
        probability_b_beats_a=b_beats_a / simulations,
        expected_loss=loss_sum / simulations,
        credible_interval=credible_interval,
    )


def calculate_sequential_test(
    conversions_a: int,
    visits_a: int,
    conversions_b: int,
    visits_b: int,
    alpha: float = 0.05,
    beta: float = 0.2,
    minimum_effect: float = 0.1
) -> SequentialResult:
    """
    Sequential Probability Ratio Test.

    A's observed rate is the null hypothesis p0; the alternative is
    p1 = p0 * (1 + minimum_effect). B's observations accumulate the log
    likelihood ratio, which is compared against Wald's boundaries.

    When A's rate is 0 or p1 leaves (0, 1) the ratio is undefined and the
    test keeps running (log likelihood ratio reported as 0).

    Args:
        conversions_a: Conversions in variant A
        visits_a: Visits in variant A
        conversions_b: Conversions in variant B
        visits_b: Visits in variant B
        alpha: Type I error rate
        beta: Type II error rate
        minimum_effect: Relative lift of the alternative hypothesis

    Returns:
        SequentialResult with decision continue, stop_A_wins or stop_B_wins
    """
    _check_counts(conversions_a, visits_a, "A")
    _check_counts(conversions_b, visits_b, "B")
    if not 0 < alpha < 1 or not 0 < beta < 1:
        raise ValueError("alpha and beta must be between 0 and 1")

    upper_boundary = math.log((1 - beta) / alpha)
    lower_boundary = math.log(beta / (1 - alpha))

    p0 = conversions_a / visits_a if visits_a else 0.0
    p1 = p0 * (1 + minimum_effect)

    if not (0 < p0 < 1 and 0 < p1 < 1):
        return SequentialResult(
            should_stop=False,
            decision=SPRT_CONTINUE,
            log_likelihood_ratio=0.0,
            upper_boundary=upper_boundary,
            lower_boundary=lower_boundary,
        )

    log_lr = (
        conversions_b * math.log(p1 / p0)
        + (visits_b - conversions_b) * math.log((1 - p1) / (1 - p0))
    )

    decision = SPRT_CONTINUE
    if log_lr >= upper_boundary:
        decision = SPRT_B_WINS
    elif log_lr <= lower_boundary:
        decision = SPRT_A_WINS

    return SequentialResult(
        should_stop=decision != SPRT_CONTINUE,
        decision=decision,
        log_likelihood_ratio=log_lr,
        upper_boundary=upper_boundary,
        lower_boundary=lower_boundary,
    )


def calculate_sample_size(
    baseline_rate: float,
    minimum_detectable_effect: float,
    confidence_level: float = 95,
    statistical_power: float = 80
) -> int:
    """
    Minimum visits per arm to detect a relative lift.

    Args:
        baseline_rate: Current conversion rate, in (0, 1)
        minimum_detectable_effect: Relative lift to detect, e.g. 0.1 for +10%
        confidence_level: Confidence in percent
        statistical_power: Power in percent

    Returns:
        Required sample size per variant (rounded up)
    """
    _check_confidence_level(confidence_level)
    if not 0 < statistical_power < 100:
        raise ValueError("statistical_power must be between 0 and 100 (exclusive)")
    if not 0 < baseline_rate < 1:
        raise ValueError("baseline_rate must be between 0 and 1")
    if minimum_detectable_effect <= 0:
        raise ValueError("minimum_detectable_effect must be positive")

    p1 = baseline_rate
    p2 = baseline_rate * (1 + minimum_detectable_effect)
    if p2 >= 1:
        raise ValueError("baseline_rate * (1 + minimum_detectable_effect) must be below 1")

    alpha = (100 - confidence_level) / 100
    beta = (100 - statistical_power) / 100
    z_alpha = inverse_normal_cdf(1 - alpha / 2)
    z_beta = inverse_normal_cdf(1 - beta)

    numerator = (z_alpha + z_beta) ** 2 * (p1 * (1 - p1) + p2 * (1 - p2))
    denominator = (p2 - p1) ** 2

    return math.ceil(numerator / denominator)


def calculate_confidence_interval(
    conversions: int,
    visits: int,
    confidence_level: float = 95
) -> Interval:
    """Normal-approximation interval for one variant's rate, clamped to [0, 1]."""
    if conversions < 0 or conversions > visits:
        raise ValueError("conversions must be between 0 and visits")
    z_score = critical_z(confidence_level)
    if visits == 0:
        return Interval(lower=0.0, upper=0.0)

    rate = conversions / visits
    margin = z_score * math.sqrt((rate * (1 - rate)) / visits)

    return Interval(lower=max(0.0, rate - margin), upper=min(1.0, rate + margin))
