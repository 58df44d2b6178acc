"""Functions to test the fitting of spatiotemporal variogram models."""

from __future__ import annotations

import warnings

import numpy as np
import pandas as pd
import pytest

from stvario.fit import (
    FitResult,
    default_bounds,
    fit_all,
    fit_spacetime_variogram,
    load_fit_results,
    rmse,
    save_fit_results,
)
from stvario.models import MarginalVariogram, STVariogramModel
from stvario.workflows.schemas import DEFAULT_MODELS


def separable_start() -> STVariogramModel:
    return STVariogramModel(
        "separable",
        space=MarginalVariogram("exponential", psill=1.0, range=5000.0, nugget=0.1),
        time=MarginalVariogram("exponential", psill=1.0, range=2.0, nugget=0.1),
    )


def synthetic_variogram(model: STVariogramModel) -> pd.DataFrame:
    """Empirical variogram made of the exact values of a model."""
    bins = np.repeat(np.arange(8), 5)
    timelag = np.tile(np.arange(5), 8)
    lower = bins * 2500.0
    dist = lower + 1250.0
    return pd.DataFrame(
        {
            "bin": bins,
            "lag_lower": lower,
            "lag_upper": lower + 2500.0,
            "spacelag": dist,
            "dist": dist,
            "timelag": timelag,
            "avg_timelag": timelag.astype(float),
            "np": np.full(len(bins), 10),
            "gamma": model(dist, timelag),
        }
    )


def product_sum_models() -> tuple[STVariogramModel, STVariogramModel]:
    """True product-sum model and a starting model away from it."""
    true_model = STVariogramModel(
        "productSum",
        space=MarginalVariogram("exponential", psill=0.8, range=8000.0, nugget=0.05),
        time=MarginalVariogram("exponential", psill=0.4, range=2.5, nugget=0.05),
        k=0.3,
    )
    start = STVariogramModel(
        "productSum",
        space=MarginalVariogram("exponential", psill=0.5, range=5000.0, nugget=0.1),
        time=MarginalVariogram("exponential", psill=0.5, range=2.0, nugget=0.1),
        k=0.5,
    )
    return true_model, start


class TestFit:
    def test_rmse(self) -> None:
        assert rmse(np.array([1.0, 2.0]), np.array([1.0, 4.0])) == pytest.approx(np.sqrt(2))

    def test_fit_separable_scenario(self, empirical_variogram: pd.DataFrame) -> None:
        """Check the fit of the separable model on the default scenario"""

        start = separable_start()
        result = fit_spacetime_variogram(empirical_variogram, start)

        assert isinstance(result, FitResult)
        assert result.name == "separable"
        assert result.family == "separable"
        assert np.isfinite(result.loss)
        assert result.sse >= 0
        assert result.nfev > 0
        assert result.model.space.psill > 0 and result.model.time.psill > 0
        assert result.model.space.range > 0 and result.model.time.range > 0
        assert result.param_names == tuple(start.param_names())
        assert np.array_equal(result.params, result.model.to_vector())

        # The fit improves on the starting model
        valid = np.isfinite(empirical_variogram["gamma"])
        emp = empirical_variogram[valid]
        loss_start = rmse(emp["gamma"].values, start(emp["dist"].values, emp["timelag"].values))
        assert result.loss <= loss_start

        # The starting model is left untouched
        assert start.space.psill == 1.0

    @pytest.mark.parametrize("method", ["trf", "dogbox"])  # type: ignore
    @pytest.mark.parametrize("weighting", ["none", "npairs", "npairs_dist"])  # type: ignore
    def test_fit_recovers_parameters(self, method: str, weighting: str) -> None:
        """Check that fitting the exact values of a model recovers it"""

        true_model, start = product_sum_models()
        emp = synthetic_variogram(true_model)

        with warnings.catch_warnings():
            warnings.simplefilter("ignore", UserWarning)
            result = fit_spacetime_variogram(emp, start, method=method, weighting=weighting)

        assert result.loss < 0.01
        assert np.allclose(result.model(emp["dist"].values, emp["timelag"].values), emp["gamma"].values, atol=0.02)

    @pytest.mark.parametrize("weighting", ["none", "npairs", "npairs_dist"])  # type: ignore
    def test_fit_lbfgsb_improves(self, weighting: str) -> None:
        """
        Check that L-BFGS-B improves on the starting model within the default bounds. The quasi-Newton minimizer
        stops on a small projected gradient of the summed squares, so it can end before reaching the exact values.
        """

        true_model, start = product_sum_models()
        emp = synthetic_variogram(true_model)

        with warnings.catch_warnings():
            warnings.simplefilter("ignore", UserWarning)
            result = fit_spacetime_variogram(emp, start, method="L-BFGS-B", weighting=weighting)

        start_loss = rmse(emp["gamma"].values, start(emp["dist"].values, emp["timelag"].values))
        assert result.loss < start_loss
        lower, upper = default_bounds(start, emp)
        assert np.all(result.params >= lower - 1e-12) and np.all(result.params <= upper * (1 + 1e-12))

    def test_fit_ignores_nan_bins(self) -> None:

        emp = synthetic_variogram(separable_start())
        emp.loc[3, "gamma"] = np.nan
        result = fit_spacetime_variogram(emp, separable_start())
        assert np.isfinite(result.loss)

        emp["gamma"] = np.nan
        with pytest.raises(ValueError, match="valid bin"):
            fit_spacetime_variogram(emp, separable_start())

    def test_default_bounds(self) -> None:

        lower, upper = default_bounds(separable_start())

        assert np.array_equal(lower == 0, [False, False, True, False, False, True])
        assert np.all(lower[lower != 0] > 0)
        assert np.all(np.isinf(upper))

        # Upper bounds derived from the empirical variogram, never below the starting values
        emp = synthetic_variogram(separable_start())
        lower, upper = default_bounds(separable_start(), emp)
        gamma_max = emp["gamma"].max()
        expected = [10 * gamma_max, 200000.0, 10 * gamma_max, 10 * gamma_max, 40.0, 10 * gamma_max]
        assert upper.tolist() == pytest.approx(expected)
        lower, upper = default_bounds(separable_start(), emp.assign(gamma=0.05))
        assert upper[0] == 1.0 and upper[2] == pytest.approx(0.5)

    def test_fit_scenario_stays_bounded(self, empirical_variogram: pd.DataFrame) -> None:
        """Check that the fitted sills and ranges of all families stay on the scale of the empirical variogram"""

        models = {name: STVariogramModel.from_dict(params, family=name) for name, params in DEFAULT_MODELS.items()}
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", UserWarning)
            results = fit_all(empirical_variogram, models)

        gamma_max = np.nanmax(empirical_variogram["gamma"])
        lag_max = empirical_variogram["lag_upper"].max()
        for result in results:
            for pname, value in zip(result.param_names, result.params):
                if pname.endswith(("psill", "nugget")):
                    assert value <= 10 * gamma_max * (1 + 1e-9)
                elif pname.endswith("range") or pname == "stani":
                    assert value <= 10 * lag_max * (1 + 1e-9)

    def test_fit_bounds(self, empirical_variogram: pd.DataFrame) -> None:
        """Check that user bounds are applied by parameter name"""

        result = fit_spacetime_variogram(
            empirical_variogram, separable_start(), bounds={"space.nugget": (0.05, 0.2), "time.range": (1.5, 3.0)}
        )
        assert 0.05 <= result.model.space.nugget <= 0.2
        assert 1.5 <= result.model.time.range <= 3.0

    @pytest.mark.parametrize(
        "kwargs, match",
        [
            pytest.param({"method": "newton"}, "Method", id="method"),
            pytest.param({"weighting": "inverse"}, "Weighting", id="weighting"),
            pytest.param({"bounds": {"sill": (0, 1)}}, "Unknown parameter", id="bounds_name"),
            pytest.param({"bounds": {"space.range": (10, 1)}}, "Lower bounds", id="bounds_order"),
            pytest.param({"bounds": {"space.range": (6000, 9000)}}, "outside of their bounds", id="bounds_start"),
        ],
    )  # type: ignore
    def test_fit_errors(self, kwargs: dict, match: str) -> None:  # type: ignore

        emp = synthetic_variogram(separable_start())
        with pytest.raises(ValueError, match=match):
            fit_spacetime_variogram(emp, separable_start(), **kwargs)

        with pytest.raises(ValueError, match="gamma"):
            fit_spacetime_variogram(emp.drop(columns="gamma"), separable_start())

    def test_fit_not_converged(self, empirical_variogram: pd.DataFrame) -> None:
        """Check that a fit stopped early is flagged without raising"""

        with pytest.warns(UserWarning, match="did not converge"):
            result = fit_spacetime_variogram(empirical_variogram, separable_start(), max_nfev=1)

        assert not result.converged
        assert result.message != ""

    def test_fit_all(self, empirical_variogram: pd.DataFrame) -> None:

        models = {name: STVariogramModel.from_dict(params, family=name) for name, params in DEFAULT_MODELS.items()}

        with warnings.catch_warnings():
            warnings.simplefilter("ignore", UserWarning)
            results = fit_all(empirical_variogram, models)
            results_seq = fit_all(empirical_variogram, list(models.values()))

        assert [r.name for r in results] == list(models)
        assert [r.name for r in results_seq] == list(models)
        assert all(np.isfinite(r.loss) for r in results)

        with pytest.raises(ValueError, match="unique"):
            fit_all(empirical_variogram, [separable_start(), separable_start()])

    def test_save_load_fit_results(self, empirical_variogram: pd.DataFrame, tmp_path) -> None:  # type: ignore

        result = fit_spacetime_variogram(empirical_variogram, separable_start(), name="sep")
        path = tmp_path / "fitted_models.yaml"
        save_fit_results([result], path)
        loaded = load_fit_results(path)

        assert len(loaded) == 1
        assert loaded[0].name == "sep"
        assert loaded[0].model == result.model
        assert loaded[0].loss == result.loss
        assert loaded[0].converged == result.converged

        with pytest.raises(FileNotFoundError):
            load_fit_results(tmp_path / "does_not_exist.yaml")
