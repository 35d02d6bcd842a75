"""Built-in baseline assumptions for the lead-generation profit model."""

from __future__ import annotations


DEFAULTS = {
    "avg_cost_per_lead": 280.0,
    "total_daily_leads": 200.0,
    "presales": {
        "capacity": 180.0,
        "lead_rate": 0.2,
        "salary": 4500.0,
    },
    "insales_salary": 5000.0,
    "promo_labor_cost": 40000.0,
    "management": {
        "top_managers": 2.0,
        "top_salary": 15000.0,
        "center_salary": 11000.0,
    },
    "cost_ratio": {
        "wuchuang": 3.0,
        "geren": 2.0,
        # None means the break-even recommendation is used.
        "sifa_manual_cost": None,
    },
    "categories": {
        "wuchuang": {
            "name": "无创",
            "lead_ratio": 0.2,
            "conv_rate": 0.3,
            "unit_price": 2500.0,
            "capacity": 7.0,
            "center_managers": 1.0,
            "deal_cost": 600.0,
            "var_cost_rate": 0.05,
            "process_cost": 230.0,
        },
        "geren": {
            "name": "个人",
            "lead_ratio": 0.6,
            "conv_rate": 0.26,
            "unit_price": 1500.0,
            "capacity": 12.0,
            "center_managers": 3.0,
            "deal_cost": 345.0,
            "var_cost_rate": 0.05,
            "process_cost": 75.0,
        },
        "sifa": {
            "name": "司法",
            "lead_ratio": 0.2,
            "conv_rate": 0.26,
            "unit_price": 2500.0,
            "capacity": 9.0,
            "center_managers": 1.0,
            "sifa_cost_rate": 0.6,
            "var_cost_rate": 0.05,
            "process_cost": 0.0,
        },
    },
}


DEFAULT_MATRIX_CONFIG = {
    "cost_min": 250,
    "cost_max": 350,
    "leads_min": 150,
    "leads_max": 250,
    "wuchuang_conv_rate": 0.3,
    "geren_conv_rate": 0.26,
    "sifa_conv_rate": 0.26,
    "wuchuang_unit_price": 2500.0,
    "geren_unit_price": 1500.0,
    "sifa_unit_price": 2500.0,
    "use_floor_lab_cost": False,
    "group_cost_share": 0.0,
}
