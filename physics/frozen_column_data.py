"""
Tabulated frozen reference column (temperature and pressure vs depth).

Point k sits at (k - WATER_TABLE_INDEX) * DZ above the water table.
"""

from __future__ import annotations

import numpy as np

DZ = 0.1
WATER_TABLE_INDEX = 53

REF_TEMPERATURE = np.array(
    [
        262.7091428, 262.641515665, 262.58610644, 262.54456626, 262.516834608,
        262.503140657, 262.496062716, 262.488999243, 262.48192875, 262.474849863,
        262.467762477, 262.460666527, 262.453561996, 262.446448892, 262.439327226,
        262.432196991, 262.425058094, 262.417910659, 262.410754807, 262.403590438,
        262.396417523, 262.38923607, 262.382046106, 262.374847613, 262.367640513,
        262.360424583, 262.353200074, 262.345967205, 262.338725906, 262.331476326,
        262.324218348, 262.316951874, 262.309676754, 262.302392788, 262.295100307,
        262.287799762, 262.280490954, 262.273173738, 262.26584795, 262.258513003,
        262.25116961, 262.243818573, 262.236459336, 262.229091793, 262.221715879,
        262.214331552, 262.206938887, 262.199537835, 262.192127993, 262.184709455,
        262.177282338, 262.169845193, 262.162392238, 262.154903957, 262.147215752,
        262.138831145, 262.127574119, 262.106832867, 262.070124703, 262.01912569,
        261.95878179, 261.891743368, 261.819681263, 261.743550148, 261.664006281,
        261.581541241, 261.496529897, 261.409277942, 261.320038524, 261.229029146,
        261.136443739, 261.042456713, 260.947225061, 260.850890294, 260.753580116,
        260.655409681, 260.556482544, 260.456891469, 260.356719229, 260.256039443,
        260.154917462, 260.053411276, 259.951572408, 259.849446765, 259.747075431,
        259.644495381, 259.541740117, 259.438840219, 259.335823827, 259.232717041,
        259.129544246, 259.026328383, 258.92309113, 258.819853031, 258.716633546,
        258.613451025, 258.510322629, 258.407264182, 258.304290022, 258.201412884,
    ],
    dtype=np.float64,
)

REF_PRESSURE = np.array(
    [
        -91144793.8313, -79198250.2123, -64553378.2237, -53817268.5748, -40376600.31,
        -9186846.56641, -6245241.77642, -5844385.55992, -5808523.22231, -5797105.81683,
        -5795148.67225, -5807088.92269, -5810167.68087, -5821627.31323, -5820860.37694,
        -5836780.45965, -5868415.98829, -5840987.06814, -5838227.17932, -5843736.56489,
        -5852397.98775, -5856537.87728, -5857887.33366, -5869968.3054, -5899256.57528,
        -5985661.00795, -5927751.02996, -5956801.49746, -5915396.93489, -5903438.58908,
        -5900368.18448, -5923657.7528, -5971066.03108, -6058214.67597, -5996882.73853,
        -5952227.64174, -5956081.90559, -5958021.93473, -6019441.59966, -6202372.07811,
        -6030838.97887, -5995013.54658, -5986821.9308, -5986523.53408, -6003380.78559,
        -6018426.01063, -6014029.63473, -6050617.29614, -6174214.01679, -6175627.87735,
        -6271705.74182, -6657225.50566, -7802907.37546, -9925062.27734, -15631485.3766,
        -21637300.6575, -32255189.5224, -47929250.3074, -63007803.9699, -72942365.2584,
        -81113258.8592, -87994540.9417, -94323588.0452, -100411902.799, -106347449.951,
        -112258287.406, -118190275.792, -124185038.048, -130274367.97, -136457417.992,
        -142720313.132, -149043914.067, -155403433.988, -161767751.951, -168100565.584,
        -174362689.812, -180514544.613, -186518257.197, -192339144.137, -197946557.031,
        -203314195.973, -208420043.01, -213246066.64, -217777821.856, -222004036.177,
        -225916241.135, -229508484.983, -232777146.221, -235720857.447, -238340542.772,
        -240639567.369, -242623992.387, -244302919.818, -245688897.123, -246798326.804,
        -247651788.05, -248274123.31, -248694073.748, -248943176.096, -249053590.406,
    ],
    dtype=np.float64,
)
