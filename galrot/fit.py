"""CLI fitting script: fit the Galactic rotation model to a catalog.

Usage:
    python -m galrot.fit -i data/catalog.dat -o results/ --goal objects
    python -m galrot.fit -i data/catalog.dat -o results/ --goal fit --with-errors --plot
"""

import argparse
from dataclasses import replace
from pathlib import Path
from typing import Optional

import matplotlib.pyplot as plt
import pandas as pd

from galrot.catalog import Object, load_catalog, objects_to_dataframe
from galrot.config import METHODS, Consts, FitConfig
from galrot.database import get_session, init_db, insert_fit_result
from galrot.diagnostics import odd_objects_to_dataframe
from galrot.exceptions import CovarianceError, FitError, GalrotError
from galrot.intervals import profiles_to_dataframe
from galrot.observers import LoggingObserver
from galrot.params import Params
from galrot.pipeline import FitResult, FitSession, scan_degrees
from galrot.utils import setup_logger

logger = setup_logger(__name__)


def compute_objects(objects: list[Object], params: Params, consts: Consts) -> None:
    """Fill the per-object kinematics of every object."""
    for obj in objects:
        obj.compute(params, consts)
    logger.info("Computed per-object data for %d objects", len(objects))


def run_fit_for_catalog(
    objects: list[Object],
    params: Params,
    consts: Consts,
    config: FitConfig,
    output_dir: Path,
    disable_outliers: bool = False,
    with_errors: bool = False,
    with_covariance: bool = False,
    with_profiles: bool = False,
    with_inner_profiles: bool = False,
) -> FitResult:
    """Execute the fitting pipeline and write its outputs.

    Steps:
        1. Fit the model, alternating with outlier passes unless disabled.
        2. Write the parameters, per-object results and rotation curve.
        3. Optionally compute confidence intervals, the covariance matrix,
           parameter profiles and the inner-profile analysis.

    Failures of the optional stages are logged; the outputs already written
    are kept.

    Returns:
        FitResult of the final fit.
    """
    observer = LoggingObserver(log_file=output_dir / "logs" / "fit.log")
    session = FitSession(objects, params=params, consts=consts, config=config, observer=observer)

    result = session.fit() if disable_outliers else session.fit_with_outliers()
    compute_objects(objects, result.params, consts)
    result.rotation_curve.to_dataframe().to_csv(output_dir / "fit_rotcurve.csv", index=False)

    try:
        stats = session.parallax_statistics()
        pd.DataFrame([stats.to_dict()]).to_csv(output_dir / "delta_varpi.csv", index=False)
    except ValueError as exc:
        logger.warning("Skipping the parallax statistics: %s", exc)

    if with_errors:
        errors_log = setup_logger("galrot.errors", log_file=output_dir / "logs" / "errors.log")
        intervals = session.fit_errors()
        for ci in intervals:
            for side, message in ci.errors.items():
                errors_log.error("%s (%s): %s", ci.name, side, message)

    if with_covariance:
        try:
            cov = session.fit_covariance()
            for name, df in cov.to_dataframes().items():
                df.to_csv(output_dir / f"fit_{name}.csv")
        except CovarianceError as exc:
            logger.error("Covariance stage failed: %s", exc)

    if with_profiles:
        try:
            profiles = session.compute_profiles()
            profiles_to_dataframe(profiles).to_csv(output_dir / "fit_profiles.csv", index=False)
        except FitError as exc:
            logger.error("Profile stage failed: %s", exc)

    if with_inner_profiles:
        odd = session.find_odd_objects()
        odd_objects_to_dataframe(odd).to_csv(output_dir / "odd_objects.csv", index=False)

    result.to_summary_dataframe().to_csv(output_dir / "fit_params.csv", index=False)
    result.to_objects_dataframe(objects).to_csv(output_dir / "fit_objects.csv", index=False)
    return result


def plot_rotation_curve(
    result: FitResult,
    objects: list[Object],
    output_path: Optional[str] = None,
):
    """Plot the fitted rotation curve over the azimuthal velocities of the objects."""
    fig, ax = plt.subplots(figsize=(8, 6))

    used = [obj for obj in objects if not obj.outlier and obj.theta is not None]
    rejected = [obj for obj in objects if obj.outlier and obj.theta is not None]
    if used:
        ax.errorbar(
            [obj.r_g.value for obj in used],
            [obj.theta.value for obj in used],
            yerr=[obj.theta_evel for obj in used],
            fmt="ko", markersize=3, capsize=2, alpha=0.7, label="Objects",
        )
    if rejected:
        ax.plot(
            [obj.r_g.value for obj in rejected],
            [obj.theta.value for obj in rejected],
            "rx", markersize=4, label="Outliers",
        )

    curve = result.rotation_curve
    ax.plot(curve.r, curve.theta, color="orange", linewidth=2.5, label="Model")

    params = result.params
    ax.text(
        0.95, 0.05,
        (
            rf"$R_0 = {params.r_0:.3f}$ kpc"
            "\n"
            rf"$\theta_0 = {params.theta_0:.2f}$ km/s"
            "\n"
            rf"$n = {result.degree}$, $N = {result.n_used}$"
        ),
        transform=ax.transAxes,
        fontsize=10,
        verticalalignment="bottom",
        horizontalalignment="right",
        bbox=dict(boxstyle="round,pad=0.3", facecolor="wheat", alpha=0.8),
    )

    ax.set_xlabel("Galactocentric distance (kpc)", fontsize=12)
    ax.set_ylabel("Azimuthal velocity (km/s)", fontsize=12)
    ax.set_title("Rotation curve of the Galaxy", fontsize=14)
    ax.legend(loc="upper left", fontsize=10)
    ax.set_xlim(curve.r.min(), curve.r.max())
    ax.grid(True, alpha=0.3)

    plt.tight_layout()

    if output_path:
        Path(output_path).parent.mkdir(parents=True, exist_ok=True)
        fig.savefig(output_path, dpi=150, bbox_inches="tight")
        logger.info("Plot saved: %s", output_path)

    plt.close(fig)


# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    defaults = Params()
    consts = Consts()
    parser = argparse.ArgumentParser(
        description="Fit the model of the Galactic rotation to a catalog of objects"
    )
    parser.add_argument("-i", "--input", type=str, required=True, help="Catalog file")
    parser.add_argument("-o", "--output", type=str, required=True, help="Output directory")
    parser.add_argument("--goal", choices=("objects", "fit"), default="fit")

    fit = parser.add_argument_group("fit")
    fit.add_argument("--degree", type=int, default=1, help="Degree of the rotation-curve series")
    fit.add_argument(
        "--degree-max", type=int, default=None,
        help="Fit every degree from 1 to this one and tabulate the costs",
    )
    fit.add_argument("--l-stroke", type=int, default=1, help="Outliers that may be kept (L')")
    fit.add_argument("--method", choices=METHODS, default="lbfgs")
    fit.add_argument("--workers", type=int, default=1)
    fit.add_argument("--with-errors", action="store_true", help="Compute confidence intervals")
    fit.add_argument("--with-covariance", action="store_true", help="Compute the covariance matrix")
    fit.add_argument("--with-profiles", action="store_true", help="Compute parameter profiles")
    fit.add_argument(
        "--with-inner-profiles", action="store_true",
        help="Find objects with a multi-modal inner cost",
    )
    fit.add_argument("--disable-outliers", action="store_true")
    fit.add_argument("--fix-sigmas", action="store_true", help="Keep the dispersions fixed")
    fit.add_argument("--plot", action="store_true", help="Plot the rotation curve")
    fit.add_argument("--db", type=str, default=None, help="Store the fit in this SQLite file")

    initial = parser.add_argument_group("initial parameters")
    initial.add_argument("--r-0", type=float, default=defaults.r_0)
    initial.add_argument("--omega-0", type=float, default=defaults.omega_0)
    initial.add_argument("--a", type=float, default=defaults.a)
    initial.add_argument("--u-sun", type=float, default=defaults.u_sun)
    initial.add_argument("--v-sun", type=float, default=defaults.v_sun)
    initial.add_argument("--w-sun", type=float, default=defaults.w_sun)
    initial.add_argument("--sigma-r", type=float, default=defaults.sigma_r)
    initial.add_argument("--sigma-theta", type=float, default=defaults.sigma_theta)
    initial.add_argument("--sigma-z", type=float, default=defaults.sigma_z)

    constants = parser.add_argument_group("constants")
    constants.add_argument("--alpha-ngp", type=str, default="12:51:26.2817")
    constants.add_argument("--delta-ngp", type=str, default="27:07:42.013")
    constants.add_argument("--l-ncp", type=float, default=122.932, help="Degrees")
    constants.add_argument("--k", type=float, default=consts.k)
    constants.add_argument("--u-sun-standard", type=float, default=consts.u_sun_standard)
    constants.add_argument("--v-sun-standard", type=float, default=consts.v_sun_standard)
    constants.add_argument("--w-sun-standard", type=float, default=consts.w_sun_standard)
    return parser


def main(argv: Optional[list] = None):
    parser = build_parser()
    args = parser.parse_args(argv)

    output_dir = Path(args.output)
    output_dir.mkdir(parents=True, exist_ok=True)

    try:
        consts = Consts.from_strings(
            args.alpha_ngp,
            args.delta_ngp,
            args.l_ncp,
            k=args.k,
            u_sun_standard=args.u_sun_standard,
            v_sun_standard=args.v_sun_standard,
            w_sun_standard=args.w_sun_standard,
        )
        params = Params(
            r_0=args.r_0,
            omega_0=args.omega_0,
            a=args.a,
            u_sun=args.u_sun,
            v_sun=args.v_sun,
            w_sun=args.w_sun,
            sigma_r=args.sigma_r,
            sigma_theta=args.sigma_theta,
            sigma_z=args.sigma_z,
        )
        config = FitConfig(
            degree=args.degree,
            l_stroke=args.l_stroke,
            method=args.method,
            workers=args.workers,
            fit_sigmas=not args.fix_sigmas,
        )
        objects = load_catalog(args.input, consts)

        if args.goal == "objects":
            compute_objects(objects, params, consts)
            objects_to_dataframe(objects).to_csv(output_dir / "objects.csv", index=False)
            return

        if args.degree_max is not None:
            table = scan_degrees(
                objects,
                args.degree_max,
                params=params,
                consts=consts,
                config=replace(config, degree=1),
                observer=LoggingObserver(log_file=output_dir / "logs" / "fit.log"),
                reject=not args.disable_outliers,
            )
            table.to_csv(output_dir / "fit_degrees.csv", index=False)
            return

        result = run_fit_for_catalog(
            objects,
            params,
            consts,
            config,
            output_dir,
            disable_outliers=args.disable_outliers,
            with_errors=args.with_errors,
            with_covariance=args.with_covariance,
            with_profiles=args.with_profiles,
            with_inner_profiles=args.with_inner_profiles,
        )
    except (GalrotError, FileNotFoundError, ValueError) as exc:
        logger.error("%s", exc)
        raise SystemExit(1) from exc

    if args.plot:
        plot_rotation_curve(result, objects, str(output_dir / "fit_rotcurve.png"))

    if args.db:
        engine = init_db(args.db)
        session = get_session(engine)
        try:
            insert_fit_result(
                session,
                Path(args.input).name,
                result.to_summary_dataframe(),
                result.to_objects_dataframe(objects),
                result.to_dict(),
            )
        finally:
            session.close()

    print(
        f"R_0={result.params.r_0:.4f} kpc  omega_0={result.params.omega_0:.4f}  "
        f"A={result.params.a:.4f}  cost={result.cost:.6f}  N={result.n_used}"
    )


if __name__ == "__main__":
    main()
