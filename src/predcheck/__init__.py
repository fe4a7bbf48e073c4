"""predcheck - posterior predictive checks for Bayesian linear regression."""

from predcheck.config import _VERSION
from predcheck.dataset import RegressionDataset as RegressionDataset
from predcheck.dataset import simulate_dataset as simulate_dataset
from predcheck.draws import PosteriorDraws as PosteriorDraws
from predcheck.model_spec import NORMAL_MODEL as NORMAL_MODEL
from predcheck.model_spec import STUDENT_T_MODEL as STUDENT_T_MODEL
from predcheck.predictive import simulate_replicates as simulate_replicates

__version__ = _VERSION
