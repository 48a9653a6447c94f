"""End-to-end integration tests for the full pipeline."""

import pytest
import numpy as np
import pandas as pd

from galrot.config import FitConfig
from galrot.database import get_session, init_db, query_latest_run, query_parameters_as_dataframe
from galrot.fit import main
from galrot.params import Params
from galrot.pipeline import FitSession, scan_degrees


# Parameters the synthetic catalogs are built with
TRUE_PARAMS = Params(sigma_r=0.0, sigma_theta=0.0, sigma_z=0.0)

# A start away from them
PERTURBED_START = Params(
    r_0=8.0, omega_0=29.0, a=16.0, u_sun=9.0, v_sun=18.0, w_sun=7.0,
    sigma_r=0.0, sigma_theta=0.0, sigma_z=0.0,
)

ZERO_SIGMAS = ["--sigma-r", "0", "--sigma-theta", "0", "--sigma-z", "0"]


@pytest.fixture(scope="module")
def fitted_session(make_objects):
    """A session fitted from a perturbed start to a zero-noise catalog."""
    session = FitSession(
        make_objects(), params=PERTURBED_START, config=FitConfig(fit_sigmas=False)
    )
    session.fit()
    return session


class TestFitSession:
    def test_parameters_are_recovered(self, fitted_session):
        params = fitted_session.result.params
        assert params.r_0 == pytest.approx(TRUE_PARAMS.r_0, rel=1e-5)
        assert params.omega_0 == pytest.approx(TRUE_PARAMS.omega_0, rel=1e-5)
        assert params.a == pytest.approx(TRUE_PARAMS.a, rel=1e-5)
        assert params.u_sun == pytest.approx(TRUE_PARAMS.u_sun, rel=1e-5)
        assert params.v_sun == pytest.approx(TRUE_PARAMS.v_sun, rel=1e-5)
        assert params.w_sun == pytest.approx(TRUE_PARAMS.w_sun, rel=1e-5)

    def test_fixed_dispersions_stay_fixed(self, fitted_session):
        params = fitted_session.result.params
        assert (params.sigma_r, params.sigma_theta, params.sigma_z) == (0.0, 0.0, 0.0)

    def test_reduced_parallaxes_match_observed(self, fitted_session):
        result = fitted_session.result
        for i, obj in enumerate(fitted_session.objects):
            assert result.reduced_parallaxes[i] == pytest.approx(obj.par, rel=0.01)

    def test_covariance_of_free_parameters(self, fitted_session):
        cov = fitted_session.fit_covariance()
        assert cov.names == ["R_0", "omega_0", "A", "u_sun", "v_sun", "w_sun"]
        np.testing.assert_array_equal(cov.hessian, cov.hessian.T)
        np.testing.assert_allclose(cov.hessian @ cov.covariance, np.eye(6), atol=1e-6)

    def test_summary_and_objects_tables(self, fitted_session):
        result = fitted_session.result
        summary = result.to_summary_dataframe()
        assert list(summary["parameter"][:3]) == ["R_0", "omega_0", "A"]
        df = result.to_objects_dataframe(fitted_session.objects)
        assert len(df) == len(fitted_session.objects)
        assert (df["d_v_r"] < 0.1).all()

    def test_parallax_statistics(self, fitted_session):
        stats = fitted_session.parallax_statistics()
        assert stats.n == len(fitted_session.objects)
        assert stats.mean == pytest.approx(0.0, abs=0.005)


class TestOutlierCycle:
    def test_corrupted_object_is_rejected(self, make_objects):
        objects = make_objects()
        objects[10].v_r += 30.0
        session = FitSession(
            objects, params=TRUE_PARAMS, config=FitConfig(fit_sigmas=False)
        )
        result = session.fit_with_outliers()
        assert objects[10].outlier
        assert 10 not in result.reduced_parallaxes
        assert any(10 in report.indices for report in result.outlier_reports)
        assert result.params.r_0 == pytest.approx(TRUE_PARAMS.r_0, abs=0.05)


class TestScanDegrees:
    def test_one_row_per_degree(self, make_objects):
        table = scan_degrees(
            make_objects(), 2, params=TRUE_PARAMS,
            config=FitConfig(fit_sigmas=False), reject=False,
        )
        assert list(table["n"]) == [1, 2]
        assert list(table.columns) == ["n", "n_used", "L_1", "sigma_theta"]
        assert table["L_1"].iloc[1] <= table["L_1"].iloc[0] + 1e-6


class TestCli:
    def test_objects_goal(self, synthetic_catalog_file, tmp_path):
        out = tmp_path / "out"
        main(["-i", str(synthetic_catalog_file), "-o", str(out), "--goal", "objects"])
        df = pd.read_csv(out / "objects.csv")
        assert len(df) == 24
        assert df["r_g"].notna().all()

    def test_fit_writes_outputs_and_database(self, synthetic_catalog_file, tmp_path):
        out = tmp_path / "out"
        db_path = str(tmp_path / "results.db")
        main(
            ["-i", str(synthetic_catalog_file), "-o", str(out),
             "--disable-outliers", "--fix-sigmas", "--plot", "--db", db_path]
            + ZERO_SIGMAS
        )

        for name in ("fit_params.csv", "fit_objects.csv", "fit_rotcurve.csv",
                     "delta_varpi.csv", "fit_rotcurve.png"):
            assert (out / name).exists(), name
        assert (out / "logs" / "fit.log").exists()

        params = pd.read_csv(out / "fit_params.csv").set_index("parameter")["value"]
        assert params["R_0"] == pytest.approx(TRUE_PARAMS.r_0, abs=0.02)

        session = get_session(init_db(db_path))
        run = query_latest_run(session, synthetic_catalog_file.name)
        assert run.n_objects == 24
        assert len(query_parameters_as_dataframe(session, run.run_id)) == 12
        session.close()

    def test_missing_catalog_exits_with_error(self, tmp_path):
        with pytest.raises(SystemExit) as exc_info:
            main(["-i", str(tmp_path / "missing.dat"), "-o", str(tmp_path / "out")])
        assert exc_info.value.code == 1
