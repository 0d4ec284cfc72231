"""
Laboratory metadata for the hourly reducer.

Same layout as the vital sign metadata: itemid, feature name, extraction
group and valid closed range. Multiple itemids may map to the same test
(blood gas and chemistry analyzers).
"""
from typing import List

LAB_METADATA = [
    # Group 1: blood gas
    {'itemid': 50802, 'name': 'baseexcess', 'group': 1, 'min': -30, 'max': 30},        # Base excess (mmol/L)
    {'itemid': 50803, 'name': 'hco3', 'group': 1, 'min': 5, 'max': 50},                # Calculated bicarbonate (mmol/L)
    {'itemid': 50882, 'name': 'hco3', 'group': 1, 'min': 5, 'max': 50},                # Bicarbonate (mmol/L)
    {'itemid': 50820, 'name': 'ph', 'group': 1, 'min': 6.8, 'max': 8.0},               # pH
    {'itemid': 50818, 'name': 'paco2', 'group': 1, 'min': 10, 'max': 120},             # PaCO2 (mmHg)
    # Group 2: liver, kidney, calcium
    {'itemid': 50817, 'name': 'sao2', 'group': 2, 'min': 0, 'max': 100},               # SaO2 (%)
    {'itemid': 50878, 'name': 'ast', 'group': 2, 'min': 0, 'max': 10000},              # AST (IU/L)
    {'itemid': 51006, 'name': 'bun', 'group': 2, 'min': 0, 'max': 300},                # Urea nitrogen (mg/dL)
    {'itemid': 50863, 'name': 'alkalinephos', 'group': 2, 'min': 0, 'max': 2000},      # Alkaline phosphatase (IU/L)
    {'itemid': 50893, 'name': 'calcium', 'group': 2, 'min': 4, 'max': 20},             # Calcium (mg/dL)
    # Group 3: electrolytes and metabolic markers
    {'itemid': 50902, 'name': 'chloride', 'group': 3, 'min': 70, 'max': 150},          # Chloride (mmol/L)
    {'itemid': 50912, 'name': 'creatinine', 'group': 3, 'min': 0.1, 'max': 25},        # Creatinine (mg/dL)
    {'itemid': 50883, 'name': 'bilirubin_direct', 'group': 3, 'min': 0, 'max': 50},    # Direct bilirubin (mg/dL)
    {'itemid': 50931, 'name': 'glucose', 'group': 3, 'min': 10, 'max': 1000},          # Glucose (mg/dL)
    {'itemid': 50813, 'name': 'lactate', 'group': 3, 'min': 0, 'max': 30},             # Lactate (mmol/L)
    # Group 4: electrolytes and cardiac markers
    {'itemid': 50960, 'name': 'magnesium', 'group': 4, 'min': 0.5, 'max': 5},          # Magnesium (mmol/L)
    {'itemid': 50970, 'name': 'phosphate', 'group': 4, 'min': 0.5, 'max': 15},         # Phosphate (mg/dL)
    {'itemid': 50971, 'name': 'potassium', 'group': 4, 'min': 2, 'max': 10},           # Potassium (mmol/L)
    {'itemid': 50885, 'name': 'bilirubin_total', 'group': 4, 'min': 0, 'max': 50},     # Total bilirubin (mg/dL)
    {'itemid': 51002, 'name': 'troponini', 'group': 4, 'min': 0, 'max': 100},          # Troponin I (ng/mL)
    {'itemid': 52642, 'name': 'troponini', 'group': 4, 'min': 0, 'max': 100},          # Troponin I (ng/mL)
    # Group 5: hematology and coagulation
    {'itemid': 51221, 'name': 'hct', 'group': 5, 'min': 15, 'max': 60},                # Hematocrit (%)
    {'itemid': 51222, 'name': 'hgb', 'group': 5, 'min': 5, 'max': 20},                 # Hemoglobin (g/dL)
    {'itemid': 50811, 'name': 'hgb', 'group': 5, 'min': 5, 'max': 20},                 # Hemoglobin, blood gas (g/dL)
    {'itemid': 51275, 'name': 'ptt', 'group': 5, 'min': 20, 'max': 150},               # PTT (sec)
    {'itemid': 51301, 'name': 'wbc', 'group': 5, 'min': 0.1, 'max': 100},              # White blood cells (K/uL)
    {'itemid': 51279, 'name': 'fibrinogen', 'group': 5, 'min': 50, 'max': 1000},       # Fibrinogen (mg/dL)
    {'itemid': 51265, 'name': 'platelets', 'group': 5, 'min': 10, 'max': 1500},        # Platelet count (K/uL)
]

# Lab feature columns in output order
LAB_COLUMNS: List[str] = [
    'baseexcess', 'hco3', 'ph', 'paco2',
    'sao2', 'ast', 'bun', 'alkalinephos', 'calcium',
    'chloride', 'creatinine', 'bilirubin_direct', 'glucose', 'lactate',
    'magnesium', 'phosphate', 'potassium', 'bilirubin_total', 'troponini',
    'hct', 'hgb', 'ptt', 'wbc', 'fibrinogen', 'platelets',
]
