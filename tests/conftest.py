"""
🧪 Pytest Configuration for pubtable

Shared fixtures:
- clinical_data: simulated cohort with numeric, factor and boolean columns
- reset_config: restores the global CONFIG after a test changes it
"""

import numpy as np
import pandas as pd
import pytest

from config import CONFIG


@pytest.fixture
def clinical_data():
    """
    🏥 Simulated cohort: age, bmi, sex, stage, smoker, event, count, time, status.
    No missing values; tests that need them set NaNs on a copy.
    """
    rng = np.random.default_rng(42)
    n = 300
    age = rng.normal(55, 10, n).round(1)
    bmi = rng.normal(26, 4, n).round(1)
    sex = rng.choice(["female", "male"], n)
    stage = rng.choice(["I", "II", "III"], n)
    smoker = rng.random(n) < 0.3
    eta = -3 + 0.04 * age + 0.3 * (sex == "male") + 0.5 * (stage == "III")
    event = rng.binomial(1, 1 / (1 + np.exp(-eta)))
    count = rng.poisson(np.exp(0.5 + 0.01 * (age - 55) + 0.2 * smoker))
    hazard = 0.05 * np.exp(0.03 * (age - 55) + 0.4 * (sex == "male"))
    event_time = rng.exponential(1 / hazard)
    censor_time = rng.uniform(5, 30, n)
    time = np.minimum(event_time, censor_time).round(2)
    status = (event_time <= censor_time).astype(int)
    return pd.DataFrame({
        "age": age,
        "bmi": bmi,
        "sex": sex,
        "stage": stage,
        "smoker": smoker,
        "event": event,
        "count": count,
        "time": time,
        "status": status,
    })


@pytest.fixture
def reset_config():
    """Snapshot CONFIG and restore it after the test."""
    saved = CONFIG.to_dict()
    yield CONFIG
    CONFIG._config = saved


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: marks tests as unit tests")
    config.addinivalue_line("markers", "integration: marks tests as integration tests")
