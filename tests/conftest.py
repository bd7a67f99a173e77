"""
Shared fixtures for the mipool test suite.

Datasets are small, hand-built and seeded so every test is deterministic.
"""

import numpy as np
import pandas as pd
import pytest

from mipool.config import ImputationConfig
from mipool.data import (
    Arithmetic,
    Column,
    Constant,
    Dataset,
    DatasetSchema,
    VariableSpec,
)


# ==================== DATA FIXTURES ====================


@pytest.fixture
def rng():
    """Seeded generator for building test data"""
    return np.random.default_rng(20240611)


@pytest.fixture
def continuous_dataset(rng):
    """Three correlated continuous variables with MCAR holes plus a complete one"""
    n = 60
    x = rng.normal(size=n)
    w = 0.8 * x + rng.normal(scale=0.5, size=n)
    y = 1.5 * x - w + rng.normal(scale=0.4, size=n)
    z = rng.normal(size=n)

    frame = pd.DataFrame({"x": x, "w": w, "y": y, "z": z})
    frame.loc[rng.choice(n, size=12, replace=False), "w"] = np.nan
    frame.loc[rng.choice(n, size=15, replace=False), "y"] = np.nan

    schema = DatasetSchema([VariableSpec(name=name) for name in frame.columns])
    return Dataset.from_frame(frame, schema)


@pytest.fixture
def scenario_b_dataset():
    """A = 1..10 complete, binary B observed on five cases, not separable"""
    frame = pd.DataFrame(
        {
            "A": [float(value) for value in range(1, 11)],
            "B": ["no", "yes", None, "no", None, None, "yes", None, "yes", None],
        }
    )
    schema = DatasetSchema(
        [
            VariableSpec(name="A"),
            VariableSpec(name="B", type="binary", levels=("no", "yes")),
        ]
    )
    return Dataset.from_frame(frame, schema)


@pytest.fixture
def scenario_c_frame():
    """Target missing in 4 of 10 cases, predictor observed in 3 of those"""
    return pd.DataFrame(
        {
            "t": [np.nan, np.nan, np.nan, np.nan, 1.0, 2.0, 3.0, 4.0, 5.0, 6.0],
            "p": [1.0, 2.0, 3.0, np.nan, 5.0, 6.0, 7.0, 8.0, 9.0, 10.0],
        }
    )


@pytest.fixture
def passive_dataset(rng):
    """Height imputed, weight complete, BMI derived from both"""
    n = 40
    height = rng.normal(loc=1.72, scale=0.08, size=n)
    weight = 24.0 * height**2 + rng.normal(scale=4.0, size=n)
    frame = pd.DataFrame({"weight": weight, "height": height})
    missing = rng.choice(n, size=10, replace=False)
    frame.loc[missing, "height"] = np.nan
    frame["bmi"] = frame["weight"] / frame["height"] ** 2

    bmi = Arithmetic(
        operation="divide",
        left=Column("weight"),
        right=Arithmetic(
            operation="power", left=Column("height"), right=Constant(2.0)
        ),
    )
    schema = DatasetSchema(
        [
            VariableSpec(name="weight"),
            VariableSpec(name="height"),
            VariableSpec(name="bmi", role="passive", formula=bmi),
        ]
    )
    return Dataset.from_frame(frame, schema)


@pytest.fixture
def mixed_dataset(rng):
    """One variable of every type and role"""
    n = 90
    income = rng.normal(loc=30.0, scale=8.0, size=n)
    age = 20.0 + 0.9 * income + rng.normal(scale=5.0, size=n)
    smoker = np.where(age + rng.normal(scale=10.0, size=n) > 47.0, "yes", "no")
    region = rng.choice(["north", "south", "west"], size=n)
    note = rng.choice(["a", "b"], size=n)

    frame = pd.DataFrame(
        {
            "income": income,
            "age": age,
            "smoker": smoker.astype(object),
            "region": region.astype(object),
            "note": note.astype(object),
        }
    )
    frame.loc[rng.choice(n, size=15, replace=False), "age"] = -9
    frame.loc[rng.choice(n, size=12, replace=False), "smoker"] = None
    frame.loc[rng.choice(n, size=14, replace=False), "region"] = None
    frame.loc[rng.choice(n, size=5, replace=False), "note"] = None

    schema = DatasetSchema(
        [
            VariableSpec(name="income", role="predictor"),
            VariableSpec(name="age", missing_values=(-9,)),
            VariableSpec(name="smoker", type="binary"),
            VariableSpec(name="region", type="categorical"),
            VariableSpec(name="note", type="binary", role="excluded"),
        ]
    )
    return Dataset.from_frame(frame, schema)


# ==================== CONFIG FIXTURES ====================


@pytest.fixture
def small_config():
    """Fast, seeded imputation settings"""
    return ImputationConfig(m=3, maxit=3, seed=7)
