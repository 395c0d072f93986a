"""
Construction stages catalogue for the reverse-construction pipeline.

Eight stages run backwards in time from the completed house (stage 1, the
uploaded reference) to bare land (stage 8). Each later stage is generated
from the previous stage's output. Optional intermediate images sit between
adjacent stages at the midpoint order (e.g. 7.5 between 8 and 7), and
transition videos run across the sorted sequence from the highest order
down to 1.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

BASE_PROMPT = (
    "Exact same house from reference image, minimalist modern design with rice field setting, "
    "identical architecture, size, proportions, identical camera angle, lens, perspective, "
    "identical location, background, horizon, NO redesign, NO style change, NO creativity, "
    "construction realism, civil-engineering accurate, use previous image output as next input"
)

TRANSITION_DURATION_SECS = 5


@dataclass(frozen=True)
class ConstructionStage:
    order: int
    key: str
    display_name: str
    prompt_fragment: str
    strength: float

    @property
    def is_pass_through(self) -> bool:
        return self.order == 1


CONSTRUCTION_STAGES: Tuple[ConstructionStage, ...] = (
    ConstructionStage(
        order=1,
        key="completed-house",
        display_name="Landscaping & Exterior Walkways (Completed House Reference)",
        prompt_fragment=(
            "PASS THROUGH, use the uploaded reference image of the completed minimalist house. "
            "The final stage shows the elevated wooden walkway that leads through the rice field to the house, "
            "decorative greenery planted around the base of the deck, outdoor furniture and lighting in place."
        ),
        strength=0.0,
    ),
    ConstructionStage(
        order=2,
        key="final-finishing-accents",
        display_name="Final Finishing & Accents",
        prompt_fragment=(
            "create an image from the exact same camera angle and perspective showing the house before "
            "landscaping was added. The distinct look is achieved here: matte white painted exterior walls, "
            "vertical wood slats installed on the gable (triangular roof section), exterior wall lanterns mounted. "
            "The large black-framed glass sliding doors and windows are in place, completed wooden deck visible. "
            "NO wooden walkway through rice field, NO outdoor furniture, NO decorative plants around the deck. "
            "The house sits on bare ground with the rice field visible in the background. It should look like a "
            "realistic construction site just before final landscaping stage."
        ),
        strength=0.3,
    ),
    ConstructionStage(
        order=3,
        key="fenestration-decking",
        display_name="Fenestration (Doors & Windows) & Decking",
        prompt_fragment=(
            "create an image from the exact same camera angle and perspective showing the house with structure "
            "enclosed. The large black-framed glass sliding doors and windows are freshly installed. The wooden "
            "planks are laid over the sub-frame creating the expansive front porch/deck. The exterior walls show "
            "smooth cement plaster (rendering) but NOT yet painted (showing grey cement color). NO vertical wood "
            "slats on gable, NO wall lanterns, NO landscaping, NO exterior paint. The dark roof tiles or metal "
            "sheets are complete with under-eave wooden panels fitted. It should look like a realistic "
            "construction site during fenestration and decking installation."
        ),
        strength=0.35,
    ),
    ConstructionStage(
        order=4,
        key="wall-construction-rendering",
        display_name="Wall Construction & Rendering",
        prompt_fragment=(
            "create an image from the exact same camera angle and perspective showing the wall construction "
            "phase. The masonry blocks or bricks for the walls are laid and erected. The walls are coated with "
            "smooth cement plaster (rendering) providing the flat, clean surface required for minimalist finish. "
            "The roof with dark tiles or corrugated metal sheets is complete. Under-eave wooden panels are fitted. "
            "NO doors or windows installed yet (showing open frames), NO deck planks (only wooden sub-frame "
            "structure visible if any), NO exterior paint or finishes. It should look like a realistic "
            "construction site during wall rendering phase."
        ),
        strength=0.35,
    ),
    ConstructionStage(
        order=5,
        key="roofing-eave-paneling",
        display_name="Roofing & Eave Paneling",
        prompt_fragment=(
            "create an image from the exact same camera angle and perspective showing the roofing phase. The "
            "roof trusses are covered with dark tiles or high-grade corrugated metal sheets. The under-eave "
            "wooden panels are fitted to provide the warm contrast seen against the black roof and white walls. "
            "The walls show completed masonry block structure but NO cement plaster rendering yet (showing raw "
            "block or brick texture). NO doors, NO windows, NO deck structure. The asymmetrical "
            "Saltbox-inspired roofline must match the reference house exactly. It should look like a realistic "
            "construction site during roofing installation."
        ),
        strength=0.35,
    ),
    ConstructionStage(
        order=6,
        key="structural-framing",
        display_name="Structural Framing",
        prompt_fragment=(
            "create an image from the exact same camera angle and perspective showing the structural framing "
            "phase. The skeleton of the house is erected, consisting of reinforced concrete pillars (columns) "
            "and beams. The roof structure creating the asymmetrical Saltbox-inspired roofline is visible but NO "
            "roof covering materials yet (no tiles or metal sheets). The structure sits on the elevated concrete "
            "platform. NO walls, NO roof covering, NO finishes, only the structural frame with beams and "
            "columns. It should look like a realistic construction site during structural framing phase in a "
            "rice field (paddy) setting."
        ),
        strength=0.4,
    ),
    ConstructionStage(
        order=7,
        key="foundation-site-preparation",
        display_name="Foundation & Site Preparation",
        prompt_fragment=(
            "create an image from the exact same camera angle and perspective showing the foundation and site "
            "preparation phase. This is the very first step: the build site is elevated. The house is built on "
            "a stilt or pier foundation given it is in a rice field (paddy). Piles are driven into the ground "
            "and an elevated concrete platform is poured to keep the living space dry and protected from "
            "seasonal flooding. NO vertical structural frame yet, NO columns or beams erected, only the "
            "foundation piles and elevated concrete platform/slab visible. The rice field surroundings are "
            "visible. It should look like a realistic construction site at the foundation stage."
        ),
        strength=0.4,
    ),
    ConstructionStage(
        order=8,
        key="bare-land",
        display_name="Bare Land (Empty Plot)",
        prompt_fragment=(
            "create an image from the exact same camera angle and perspective showing completely bare land "
            "before any construction begins. The scene shows an empty plot of land in a rice field (paddy) "
            "setting. NO foundation, NO piles, NO concrete platform, NO construction materials, NO equipment. "
            "Just natural untouched land with rice fields, the horizon, mountains in the background if visible "
            "in original image. The land is flat and empty, ready for future construction. It should look like "
            "pristine agricultural land before any site work begins."
        ),
        strength=0.45,
    ),
)


def get_all_stages() -> List[ConstructionStage]:
    return sorted(CONSTRUCTION_STAGES, key=lambda s: s.order)


def get_stage_by_key(key: str) -> Optional[ConstructionStage]:
    return next((s for s in CONSTRUCTION_STAGES if s.key == key), None)


def get_stage_by_order(order: int) -> Optional[ConstructionStage]:
    return next((s for s in CONSTRUCTION_STAGES if s.order == order), None)


def build_stage_prompt(stage: ConstructionStage, base_prompt: Optional[str] = None) -> str:
    return f"{base_prompt or BASE_PROMPT}, {stage.prompt_fragment}"


# ── Orders and keys ───────────────────────────────────────────
def format_order(order: float) -> str:
    """7.0 -> "7", 7.5 -> "7.5" (keys are written without trailing .0)."""
    if float(order).is_integer():
        return str(int(order))
    return f"{order:g}"


def pair_key(from_order: float, to_order: float) -> str:
    return f"{format_order(from_order)}-{format_order(to_order)}"


def midpoint(from_order: float, to_order: float) -> float:
    return (from_order + to_order) / 2


def _round_half(value: float) -> float:
    # Half-up, not banker's rounding
    return math.floor(value * 2 + 0.5) / 2


# ── Intermediate images ───────────────────────────────────────
INTERMEDIATE_IMAGE_PROMPTS: Dict[str, str] = {
    "8-7": (
        "Create an intermediate construction stage image showing the transition from bare land to foundation "
        "preparation. The scene shows early site work in progress: survey markers are placed, some excavation "
        "has begun, and construction equipment has arrived. Workers are visible preparing the site. Some soil "
        "has been moved but no concrete piles are installed yet. The elevated concrete platform is not yet "
        "visible. This is the midpoint between completely bare land and completed foundation. Use exact same "
        "camera angle and perspective. Photorealistic construction site."
    ),
    "7-6": (
        "Create an intermediate construction stage image showing the transition from foundation to structural "
        "framing. The elevated concrete foundation platform is complete with piles visible. Some vertical "
        "columns have been partially erected but not all columns are in place yet. Horizontal beams are being "
        "installed but the structural skeleton is not fully complete. Scaffolding is being set up. This shows "
        "the midpoint between completed foundation and fully erected structural frame. Use exact same camera "
        "angle and perspective. Photorealistic construction progress."
    ),
    "6-5": (
        "Create an intermediate construction stage image showing the transition from structural framing to "
        "roofing. The complete structural frame with all columns and beams is visible. Roof trusses are being "
        "installed and partially assembled. Some roof structure is visible but not fully covered yet. The "
        "asymmetrical roof shape is beginning to form. Scaffolding and ladders are in use. This shows the "
        "midpoint between completed structural frame and fully covered roof. Use exact same camera angle and "
        "perspective. Photorealistic construction activity."
    ),
    "5-4": (
        "Create an intermediate construction stage image showing the transition from roofing to wall "
        "construction. The roof is fully covered with dark tiles or metal sheets, and under-eave wooden panels "
        "are fitted. Wall construction has begun: some masonry blocks are laid but walls are not fully erected "
        "yet. Cement plaster rendering has started on some sections but not completed. This shows the midpoint "
        "between completed roof and fully rendered walls. Use exact same camera angle and perspective. "
        "Photorealistic construction progress."
    ),
    "4-3": (
        "Create an intermediate construction stage image showing the transition from wall rendering to "
        "fenestration. The walls are fully rendered with smooth cement plaster (grey, unpainted). Some door "
        "and window openings have frames installed but not all openings are complete. The wooden deck "
        "sub-frame structure is visible but deck planks are not yet laid. This shows the midpoint between "
        "completed walls and fully installed fenestration with deck. Use exact same camera angle and "
        "perspective. Photorealistic construction site."
    ),
    "3-2": (
        "Create an intermediate construction stage image showing the transition from fenestration to final "
        "finishing. The house has completed doors, windows, and deck installed. Exterior walls show grey cement "
        "plaster rendering. Some painting work has begun: white paint is partially applied to some wall "
        "sections but not complete. Vertical wooden slats may be partially installed on the gable. Exterior "
        "wall lights may be partially mounted. The deck is complete but not yet refined. This shows the "
        "midpoint between completed fenestration and fully finished exterior. Use exact same camera angle and "
        "perspective. Photorealistic construction progress."
    ),
    "2-1": (
        "Create an intermediate construction stage image showing the transition from final finishing to "
        "completed house with landscaping. The house shows completed white painted walls, vertical wood slats "
        "on gable, exterior wall lights mounted, and refined deck. Some landscaping work has begun: the wooden "
        "walkway may be partially installed, some decorative plants may be partially planted around the deck, "
        "but not all landscaping is complete. Outdoor furniture may be partially placed. This shows the "
        "midpoint between completed house finishing and fully landscaped completed house. Use exact same "
        "camera angle and perspective. Photorealistic construction completion."
    ),
}


def get_intermediate_prompt(from_order: int, to_order: int) -> str:
    return INTERMEDIATE_IMAGE_PROMPTS.get(pair_key(from_order, to_order)) or (
        f"Create an intermediate construction stage image between stage {from_order} and stage {to_order}. "
        "Show a transitional state that bridges these two stages. Use the exact same camera angle and "
        "perspective. The image should show construction progress that is halfway between the two stages."
    )


# ── Transition videos ─────────────────────────────────────────
_STATIC = "No camera movement. Fixed camera angle."

VIDEO_TRANSITION_PROMPTS: Dict[str, str] = {
    "8-7.5": (
        "Site preparation begins on empty rice field. Construction workers arrive with equipment. Survey "
        "markers are placed on the ground. Initial excavation starts, soil is being moved. Construction "
        "vehicles and tools are visible. Workers begin marking and measuring the site. The land shows early "
        f"signs of construction activity. No foundation yet. {_STATIC} Photorealistic construction site "
        "preparation."
    ),
    "7.5-7": (
        "Foundation construction continues. Excavation deepens, soil is leveled. Concrete piles are driven "
        "into the ground one by one. Workers prepare concrete mixture. Wet concrete is poured to form the "
        "elevated foundation platform. The concrete platform gradually takes shape and hardens. Piles become "
        f"visible above ground. The elevated foundation structure becomes complete. {_STATIC} Photorealistic "
        "foundation construction process."
    ),
    "7-6.5": (
        "Structural work begins on completed foundation. Workers set up scaffolding around the foundation. "
        "First vertical columns are lifted and positioned. Columns are secured to the foundation platform. "
        "More columns are gradually erected. Horizontal beams start to be installed. The structural skeleton "
        f"begins to take shape. {_STATIC} Photorealistic structural construction activity."
    ),
    "6.5-6": (
        "Structural framing continues. Remaining columns are erected and secured. Horizontal beams are "
        "connected between columns. The complete structural skeleton forms. Roof trusses are being prepared. "
        "The asymmetrical roof structure begins to take shape. Scaffolding is actively used. The main "
        f"structural frame becomes fully visible. {_STATIC} Photorealistic structural completion."
    ),
    "6-5.5": (
        "Roofing installation begins. Workers climb scaffolding and ladders. Roof trusses are lifted and "
        "positioned on the structural frame. Trusses are secured to the frame. The roof structure takes shape. "
        "Workers begin installing roof covering materials. Some sections show roof structure without covering. "
        f"The asymmetrical roof shape becomes more defined. {_STATIC} Photorealistic roofing process."
    ),
    "5.5-5": (
        "Roofing completion continues. Dark roof tiles or corrugated metal sheets are installed section by "
        "section. The roof covering spreads across the structure. Under-eave wooden panels are fitted beneath "
        "the roof. The roof becomes fully covered. The asymmetrical Saltbox-inspired roofline is complete. "
        f"Workers finish roofing details. The roof structure is fully complete. {_STATIC} Photorealistic "
        "roofing completion."
    ),
    "5-4.5": (
        "Wall construction begins beneath completed roof. Workers lay masonry blocks course by course. Walls "
        "rise gradually from the foundation. Some sections show completed block structure. Cement plaster "
        "rendering starts on some wall sections. Wet cement is applied by hand. Walls show partial rendering. "
        f"The building structure becomes more enclosed. {_STATIC} Photorealistic wall construction."
    ),
    "4.5-4": (
        "Wall construction and rendering continues. Remaining masonry blocks are laid. Walls reach full "
        "height. Cement plaster is applied to all wall surfaces. Wet cement rendering spreads across walls. "
        "Smooth cement plaster finish is achieved. Walls show uniform grey cement rendering. No doors or "
        f"windows installed yet. The building structure is fully enclosed. {_STATIC} Photorealistic wall "
        "rendering completion."
    ),
    "4-3.5": (
        "Fenestration work begins. Workers prepare door and window openings. Window frames are positioned and "
        "installed. Some windows are fixed in place. Large glass sliding door frames are positioned. The "
        "wooden deck sub-frame structure is assembled. Deck supports are installed. Some deck structure "
        f"becomes visible. {_STATIC} Photorealistic fenestration installation."
    ),
    "3.5-3": (
        "Fenestration and decking completion. All window frames are installed and secured. Large glass "
        "sliding doors are positioned and fixed. Glass panels are installed in windows and doors. Deck planks "
        "are laid across the sub-frame. The wooden deck becomes fully constructed. All fenestration is "
        f"complete. The building shows completed doors, windows, and deck. {_STATIC} Photorealistic "
        "fenestration completion."
    ),
    "3-2": (
        "Final exterior finishing work begins. Workers prepare paint and materials. Exterior walls are painted "
        "white using rollers and brushes. White paint spreads across walls. Vertical wooden slats are installed "
        "on the gable section. Exterior wall lights are mounted and positioned. The wooden deck is cleaned and "
        f"refined. The house shows completed exterior finishes. {_STATIC} Photorealistic finishing work."
    ),
    "3-2.5": (
        "Exterior finishing work begins. Workers prepare paint materials. White paint is applied to exterior "
        "walls using rollers and brushes. Paint spreads across wall surfaces. Some sections show completed "
        "white paint while others still show grey cement. Vertical wooden slats begin to be installed on the "
        f"gable section. Exterior wall lights start to be mounted. The deck is being cleaned. {_STATIC} "
        "Photorealistic finishing work in progress."
    ),
    "2.5-2": (
        "Final finishing completion. All exterior walls are painted white. Vertical wooden slats are fully "
        "installed on the gable. Exterior wall lights are mounted and positioned. The wooden deck is refined "
        "and cleaned. All exterior finishing details are complete. The house shows completed white painted "
        f"walls, slats, and lights. No landscaping added yet. {_STATIC} Photorealistic finishing stage "
        "completion."
    ),
    "2-1.5": (
        "Landscaping work begins. Workers start installing the wooden walkway through the rice field. Walkway "
        "supports are placed. Some walkway planks are laid. Decorative plants begin to be planted around the "
        "deck base. Some outdoor furniture is positioned. Lighting fixtures are being adjusted. Landscaping "
        f"work is in progress but not complete. {_STATIC} Photorealistic landscaping process."
    ),
    "1.5-1": (
        "Landscaping completion. The wooden walkway is fully installed connecting to the house. All decorative "
        "plants are planted around the deck. Outdoor furniture is carefully placed and arranged. Lighting "
        "fixtures are adjusted and tested. Final landscaping details are completed. Workers finish their tasks "
        "and gradually leave the site. The house appears fully completed with all landscaping finished. No "
        "camera movement. Cinematic construction completion."
    ),
}

_TRANSITION_TITLES: Dict[str, str] = {
    "8-7": "Bare Land → Foundation & Site Preparation",
    "7-6": "Foundation → Structural Framing",
    "6-5": "Structural Framing → Roofing Structure",
    "5-4": "Roofing Structure → Walls & Rendering",
    "4-3": "Wall Rendering → Fenestration & Decking",
    "3-2": "Fenestration → Final Finishing",
    "2-1": "Final Finishing → Completed House & Landscaping",
}


def get_transition_prompt(from_order: float, to_order: float) -> str:
    """Exact key, then orders rounded to 0.5, then orders rounded up, then a generic prompt."""
    candidates = (
        pair_key(from_order, to_order),
        pair_key(_round_half(from_order), _round_half(to_order)),
        pair_key(math.ceil(from_order), math.ceil(to_order)),
    )
    for key in candidates:
        if key in VIDEO_TRANSITION_PROMPTS:
            return VIDEO_TRANSITION_PROMPTS[key]
    return (
        f"Construction timelapse transition from stage {format_order(from_order)} to stage "
        f"{format_order(to_order)}. Smooth morphing transformation showing construction progress. "
        "Professional architectural visualization."
    )


def get_transition_title(from_order: float, to_order: float) -> str:
    return _TRANSITION_TITLES.get(
        pair_key(from_order, to_order),
        f"Stage {format_order(from_order)} → Stage {format_order(to_order)}",
    )


@dataclass(frozen=True)
class TransitionPlan:
    number: int
    from_order: float
    to_order: float
    prompt: str
    title: str

    @property
    def key(self) -> str:
        return pair_key(self.from_order, self.to_order)


def plan_transitions(orders: Sequence[float]) -> List[TransitionPlan]:
    """One transition per adjacent pair, walking the orders from highest to lowest."""
    ordered = sorted(set(orders), reverse=True)
    return [
        TransitionPlan(
            number=i + 1,
            from_order=a,
            to_order=b,
            prompt=get_transition_prompt(a, b),
            title=get_transition_title(a, b),
        )
        for i, (a, b) in enumerate(zip(ordered, ordered[1:]))
    ]
