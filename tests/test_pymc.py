"""Tests for predictions from PyMC models.

The posterior is built directly with ArviZ, so no MCMC sampling is needed.
"""

import arviz as az
import numpy as np
import pandas as pd
import pytest

pm = pytest.importorskip("pymc")

from posteriorsamples import add_fitted_samples, add_predicted_samples, group_columns  # noqa: E402


@pytest.fixture
def pymc_model():
    """Linear regression y ~ Normal(intercept + beta * x, sigma) on 5 rows."""
    x = np.arange(5.0)
    with pm.Model(coords={"obs": np.arange(5)}) as model:
        x_data = pm.Data("x", x, dims="obs")
        y_data = pm.Data("y_obs", 1.0 + 2.0 * x, dims="obs")
        intercept = pm.Normal("intercept", 0, 10)
        beta = pm.Normal("beta", 0, 10)
        sigma = pm.HalfNormal("sigma", 1)
        mu = pm.Deterministic("mu", intercept + beta * x_data, dims="obs")
        pm.Normal("y", mu=mu, sigma=sigma, observed=y_data, dims="obs")
    return model


@pytest.fixture
def dimless_model():
    """The same regression with data containers declared without dims."""
    x = np.arange(5.0)
    with pm.Model() as model:
        x_data = pm.Data("x", x)
        y_data = pm.Data("y_obs", 1.0 + 2.0 * x)
        intercept = pm.Normal("intercept", 0, 10)
        beta = pm.Normal("beta", 0, 10)
        sigma = pm.HalfNormal("sigma", 1)
        mu = pm.Deterministic("mu", intercept + beta * x_data)
        pm.Normal("y", mu=mu, sigma=sigma, observed=y_data)
    return model


@pytest.fixture
def pymc_idata():
    """2 chains of 3 draws."""
    rng = np.random.default_rng(42)
    return az.from_dict(
        posterior={
            "intercept": rng.normal(1.0, 0.1, size=(2, 3)),
            "beta": rng.normal(2.0, 0.1, size=(2, 3)),
            "sigma": rng.uniform(0.5, 1.0, size=(2, 3)),
        }
    )


@pytest.fixture
def grid():
    return pd.DataFrame({"x": [10.0, 20.0, 30.0]})


class TestFitted:
    """Tests for fitted draws from a PyMC model."""

    def test_values(self, pymc_model, pymc_idata, grid):
        """Test fits equal intercept + beta * x for each draw, chain-major."""
        result = add_fitted_samples(grid, pymc_model, idata=pymc_idata, progressbar=False)

        intercept = pymc_idata.posterior["intercept"].values.ravel()
        beta = pymc_idata.posterior["beta"].values.ravel()
        for _, row in result.iterrows():
            i = int(row[".iteration"]) - 1
            np.testing.assert_allclose(row["estimate"], intercept[i] + beta[i] * row["x"])

    def test_layout(self, pymc_model, pymc_idata, grid):
        result = add_fitted_samples(grid, pymc_model, idata=pymc_idata, progressbar=False)

        assert len(result) == 18
        assert list(result.columns) == ["x", ".row", ".chain", ".iteration", "estimate"]
        assert group_columns(result) == ["x", ".row"]

    def test_data_restored(self, pymc_model, pymc_idata, grid):
        """Test the model's data and coords are unchanged afterwards."""
        add_fitted_samples(grid, pymc_model, idata=pymc_idata, progressbar=False)

        np.testing.assert_array_equal(pymc_model["x"].get_value(), np.arange(5.0))
        assert pymc_model["y_obs"].get_value().shape == (5,)
        assert len(pymc_model.coords["obs"]) == 5

    def test_n_draws(self, pymc_model, pymc_idata, grid):
        result = add_fitted_samples(
            grid, pymc_model, idata=pymc_idata, n=2, random_seed=0, progressbar=False
        )

        assert len(result) == 6
        assert set(result[".iteration"]) == {1, 2}

    def test_dpar_free_variable(self, pymc_model, pymc_idata, grid):
        """Test a free parameter is read from the posterior and repeated per row."""
        result = add_fitted_samples(
            grid, pymc_model, idata=pymc_idata, dpar={"sd": "sigma"}, progressbar=False
        )

        sigma = pymc_idata.posterior["sigma"].values.ravel()
        for _, row in result.iterrows():
            assert row["sd"] == sigma[int(row[".iteration"]) - 1]

    def test_dpar_true_raises(self, pymc_model, pymc_idata, grid):
        with pytest.raises(ValueError, match="do not declare distributional parameters"):
            add_fitted_samples(grid, pymc_model, idata=pymc_idata, dpar=True)

    def test_unknown_dpar_raises(self, pymc_model, pymc_idata, grid):
        with pytest.raises(ValueError, match="not part of the model"):
            add_fitted_samples(grid, pymc_model, idata=pymc_idata, dpar="nu")

    def test_linear_scale_raises(self, pymc_model, pymc_idata, grid):
        with pytest.raises(ValueError, match="no link function"):
            add_fitted_samples(grid, pymc_model, idata=pymc_idata, scale="linear")

    def test_re_formula_raises(self, pymc_model, pymc_idata, grid):
        with pytest.raises(ValueError, match="re_formula must be None"):
            add_fitted_samples(grid, pymc_model, idata=pymc_idata, re_formula="~0")

    def test_unrelated_newdata_raises(self, pymc_model, pymc_idata):
        with pytest.raises(ValueError, match="name a data container"):
            add_fitted_samples(
                pd.DataFrame({"z": [1.0]}), pymc_model, idata=pymc_idata, progressbar=False
            )


class TestPredicted:
    """Tests for predictive draws from a PyMC model."""

    def test_layout(self, pymc_model, pymc_idata, grid):
        result = add_predicted_samples(
            grid, pymc_model, idata=pymc_idata, random_seed=1, progressbar=False
        )

        assert len(result) == 18
        assert result.columns[-1] == "pred"
        assert np.isfinite(result["pred"]).all()

    def test_draws_centred_on_fits(self, pymc_model, pymc_idata, grid):
        """Test predictions are within a few sigma of the fitted values."""
        result = add_predicted_samples(
            grid, pymc_model, idata=pymc_idata, random_seed=1, progressbar=False
        )

        intercept = pymc_idata.posterior["intercept"].values.ravel()
        beta = pymc_idata.posterior["beta"].values.ravel()
        i = result[".iteration"].to_numpy() - 1
        expected = intercept[i] + beta[i] * result["x"].to_numpy()
        assert (np.abs(result["pred"].to_numpy() - expected) < 10.0).all()

    def test_newdata_defaults_to_model_data(self, pymc_model, pymc_idata):
        """Test the model's own data containers are used without newdata."""
        result = add_predicted_samples(
            None, pymc_model, idata=pymc_idata, random_seed=1, progressbar=False
        )

        assert len(result) == 30
        assert {"x", "y_obs"} <= set(result.columns)

    def test_native_trace_argument_rejected(self, pymc_model, pymc_idata, grid):
        from posteriorsamples import AmbiguousArgumentError

        with pytest.raises(AmbiguousArgumentError, match="generic argument `idata`"):
            add_predicted_samples(grid, pymc_model, idata=pymc_idata, trace=pymc_idata)


class TestWithoutDims:
    """Tests for models whose data containers have no named dims."""

    def test_predicted_on_fewer_rows(self, dimless_model, pymc_idata, grid):
        """Test the observed container is resized along with the covariates."""
        result = add_predicted_samples(
            grid, dimless_model, idata=pymc_idata, random_seed=1, progressbar=False
        )

        assert len(result) == 18
        assert np.isfinite(result["pred"]).all()

    def test_fitted_values(self, dimless_model, pymc_idata, grid):
        result = add_fitted_samples(grid, dimless_model, idata=pymc_idata, progressbar=False)

        intercept = pymc_idata.posterior["intercept"].values.ravel()
        beta = pymc_idata.posterior["beta"].values.ravel()
        i = result[".iteration"].to_numpy() - 1
        np.testing.assert_allclose(
            result["estimate"].to_numpy(), intercept[i] + beta[i] * result["x"].to_numpy()
        )

    def test_data_restored(self, dimless_model, pymc_idata, grid):
        add_predicted_samples(
            grid, dimless_model, idata=pymc_idata, random_seed=1, progressbar=False
        )

        np.testing.assert_array_equal(dimless_model["x"].get_value(), np.arange(5.0))
        np.testing.assert_array_equal(
            dimless_model["y_obs"].get_value(), 1.0 + 2.0 * np.arange(5.0)
        )
