"""
Hourly Sepsis Dataset Construction for MIMIC-IV ICU Stays

This package turns irregular ICU event streams (vital signs, laboratory
results, antibiotic administrations) into one feature row per ICU stay and
clock hour, labeled with a retrospective Sepsis-3 onset label for early
prediction models.

The package is organized into several components:
- Cohort definition and stay-level attributes
- Vital sign and lab reduction to hourly medians with range filtering
- Hourly antibiotic exposure
- Merge of the per-source hourly tables on (stay_id, hour)
- Sepsis onset derivation and hourly labeling
- Row assembly, batch orchestration and data quality reports

Main workflow:
1. Select eligible stays (length of stay and age bounds)
2. Reduce each source to an hourly table per batch of stays
3. Merge the hourly tables and attach cohort attributes and labels
4. Export the hourly table and validate it with the quality reports
"""
