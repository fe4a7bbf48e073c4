"""Configuration constants for the posterior predictive check pipeline."""

from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as _pkg_version

try:
    _VERSION = _pkg_version("predcheck")
except PackageNotFoundError:
    _VERSION = "dev"

RANDOM_SEED = 42

# Generative model: y = b0 + b1*x1 + b2*x2 + eps
N_OBS = 5000
TRUE_COEFFICIENTS = (3.0, 1.0, 2.0)
TRUE_SIGMA = 2.0
TRUE_NU = 3.0  # Student-t noise degrees of freedom
X2_TRIALS = 10
X2_PROB = 0.1
COEF_NAMES = ("intercept", "x1", "x2")
NOISE_FAMILIES = ("normal", "student_t")

# Priors (vague, in the spirit of the classic BUGS defaults)
BETA_PRIOR_SIGMA = 100.0
TAU_PRIOR_ALPHA = 0.01
TAU_PRIOR_BETA = 0.01
NU_LOWER = 1.1  # keeps nu away from the Cauchy boundary
NU_UPPER = 10.0

# Sampler defaults
N_DRAWS = 1000
N_TUNE = 1000
N_CHAINS = 2
SAMPLERS = ("nutpie", "pymc")
DEFAULT_SAMPLER = "nutpie"

# Convergence thresholds (Vehtari et al. 2021)
RHAT_THRESHOLD = 1.01
ESS_THRESHOLD = 400
MAX_DIVERGENCES = 10
BFMI_THRESHOLD = 0.3

# Posterior predictive check defaults
N_REPLICATES = 50
VALUE_RANGE = 100.0  # plots drop |value| beyond this
TAIL_QUANTILE = 0.99
DF_MODES = ("draw", "posterior_mean")

RESULTS_ROOT = "results"
TIMEZONE = "America/Chicago"
