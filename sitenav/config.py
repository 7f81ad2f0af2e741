"""Configuration settings for sitenav."""

from typing import Optional

CONFIG = {
    # Geometry
    "parallel_epsilon": 1e-10,  # |denominator| below this means parallel/collinear
    "endpoint_epsilon": 1e-9,  # parametric tolerance for endpoint vs interior
    "near_endpoint_epsilon": 1e-6,  # degrees - endpoint lying on another segment
    "split_dedupe_epsilon": 1e-8,  # parametric - split points closer than this merge
    # Graph construction
    "node_merge_tolerance": 3.0,  # meters
    "min_edge_length": 0.1,  # meters - shorter edges are discarded
    "simplify_chains": True,  # merge degree-2 nodes along the same line
    # Route planning
    "projection_max_distance": 200.0,  # meters - nothing closer means no projection
    "projection_candidate_radius": 20.0,  # meters - candidates for scored projection
    "projection_direct_threshold": 5.0,  # meters - closer projections are used as is
    "projection_target_radius": 50.0,  # meters - scored projection only for short hops
    "projection_distance_weight": 0.6,
    "projection_angle_weight": 0.4,
    "endpoint_fraction": 0.01,  # fraction of edge length treated as the endpoint
    "remove_backtracks": True,
    "backtrack_epsilon": 1e-5,  # degrees
    # Path processing
    "resample_spacing": 3.0,  # meters
    "min_turn_segment": 0.3,  # meters - skip turns on shorter segments
    "turn_threshold": 30.0,  # degrees
    "uturn_threshold": 150.0,  # degrees
    "scurve_distance": 2.0,  # meters
    "scurve_magnitude_tolerance": 10.0,  # degrees
    "scurve_net_change": 15.0,  # degrees
    "scurve_window": 3,  # points either side for net change
    # GPS fix filtering
    "max_accuracy": 500.0,  # meters
    "max_jump": 100.0,  # meters
    "max_speed": 15.0,  # m/s
    "min_movement": 0.3,  # meters - below this a fix is stationary
    "fix_history_size": 10,
    "fix_reanchor_rejections": 5,  # consecutive rejections before history restarts at the newest fix
    # Snapping and progress
    "snap_threshold": 8.0,  # meters
    "snap_threshold_turning": 10.0,  # meters - near turns and while deviated
    "turn_zone_points": 10,  # points either side of a turn that use the wider threshold
    "section_lookahead_points": 8,  # extend snapping window this close to a turn
    "deviation_confirm_seconds": 3.0,  # seconds off route before deviation is declared
    "completion_tail_points": 2,  # leg ends within the last N points
    "completion_distance": 3.0,  # meters - raw distance to leg end
    "transition_max_index": 5,  # points - transition turn check window
    "replan_on_deviation": True,  # reroute to the leg end when a deviation lands on another road
    # Speed estimate
    "speed_history_size": 8,
    "speed_initial": 8.33,  # m/s (30 km/h)
    "speed_min": 1.0,  # m/s
    "speed_max": 20.0,  # m/s
    "speed_min_dt": 0.5,  # seconds
    "speed_min_distance": 0.3,  # meters
    "speed_blend": 0.2,  # weight of the newest sample
    # Guidance timing
    "preannounce_fraction": 0.25,
    "preannounce_window": 0.2,  # +/- share of the pre-announce distance
    "preannounce_min_distance": 5.0,  # meters between turns
    "turn_announce_distance": 8.0,  # meters
    "uturn_announce_distance": 6.0,  # meters
    "straight_min_turn_distance": 50.0,  # meters - only prompt straight beyond this
    "straight_interval": 5.0,  # seconds between straight prompts
    "straight_repeat_interval": 8.0,  # seconds before the same straight prompt repeats
    "straight_lookahead_seconds": 10.0,  # predicted travel that suppresses straight prompts
    "straight_buffer": 15.0,  # meters
    "straight_min_length": 15.0,  # meters of straight road ahead
    "straight_check_points": 10,
    "straight_max_change": 5.0,  # degrees
    "straight_mean_change": 2.0,  # degrees
    "speech_dedupe_seconds": 5.0,  # identical text within this window is dropped
    # Heading
    "heading_min_movement": 0.5,  # meters
    "heading_calibration_distance": 5.0,  # meters
    "heading_calibration_flip": 155.0,  # degrees - difference meaning compass is reversed
    "heading_calibration_match": 25.0,  # degrees - difference meaning compass is fine
    "heading_smoothing": 0.25,
    "heading_compass_weight": 0.7,  # compass share when blending with movement bearing
    # Simulation / playback
    "simulate_speed": 1.5,  # m/s
    "simulate_interval": 1.0,  # seconds
    # KML download
    "kml_fetch_timeout": 30,  # seconds
    "kml_fetch_retry_time": 20.0,  # seconds
}


def merged_config(overrides: Optional[dict] = None) -> dict:
    """Return CONFIG with per-instance overrides applied."""
    config = dict(CONFIG)
    if overrides:
        unknown = set(overrides) - set(CONFIG)
        if unknown:
            raise KeyError(f"Unknown config keys: {', '.join(sorted(unknown))}")
        config.update(overrides)
    return config
