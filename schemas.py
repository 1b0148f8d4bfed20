"""
Database Schemas for the Farm & Store Marketplace

MongoDB collections are defined below using Pydantic models. Each document
class name is converted to lowercase for the collection name
(UserProfile -> "userprofile").

We will use these collections:
- user: login accounts (the session principal)
- userprofile: public identity/contact record, one per account
- farmprofile / storeprofile: seller extensions of a user profile
- farmpost / storepost: product listings
- cartitem: items in a user's cart, unique per (userId, id)
- userreview: reviews left by one user about another user's profile

Request models (``*In`` / ``*Update``) ignore unknown keys, which is how the
update allow-lists are enforced.
"""

from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

PHONE_PATTERN = r"^(\+\d{1,3}[- ]?)?\d{10,15}$"

AccountRole = Literal["admin", "user"]
UserRole = Literal["Farmer", "Seller", "Buyer", "Both"]
Gender = Literal["Male", "Female", "Non-binary", "Prefer not to say"]
IdentityCardType = Literal["Passport", "Driver License", "National ID", "Other"]
OwnershipStatus = Literal["Owned", "Leased", "Rented", "Communal"]
FarmType = Literal["Crop Farming", "Livestock Farming", "Mixed", "Aquaculture", "Nursery", "Poultry", "Others"]
ProductionScale = Literal["Small", "Medium", "Commercial"]

# Production list that may be edited for each farm type
FARM_TYPE_FIELDS = {
    "Crop Farming": "cropsGrown",
    "Livestock Farming": "livestockProduced",
    "Mixed": "mixedCropsGrown",
    "Aquaculture": "aquacultureType",
    "Nursery": "nurseryType",
    "Poultry": "poultryType",
    "Others": "othersType",
}
PRODUCTION_FIELDS = list(FARM_TYPE_FIELDS.values())


class Model(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")


# --- Accounts ---

class User(Model):
    name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    password_hash: str = Field(..., description="BCrypt hash of password")
    role: AccountRole = Field("user")


# --- Shared pieces ---

class Location(Model):
    region: str
    district: str


class OptionalLocation(Model):
    region: Optional[str] = None
    district: Optional[str] = None


class ImageRef(Model):
    url: str
    fileName: Optional[str] = None


class Tag(Model):
    label: str
    value: str


class CategoryRef(Model):
    name: str
    id: str


# --- User profile ---

class ProfilePicture(ImageRef):
    pass


class SocialMediaLinks(Model):
    twitter: Optional[str] = None
    facebook: Optional[str] = None
    instagram: Optional[str] = None
    linkedIn: Optional[str] = None

    @field_validator("twitter", "facebook", "instagram", "linkedIn", mode="before")
    @classmethod
    def http_url_or_none(cls, v):
        if v is None or (isinstance(v, str) and not v.strip()):
            return None
        if not isinstance(v, str) or not v.strip().lower().startswith(("http://", "https://")):
            raise ValueError("must be an http(s) URL")
        return v.strip()


class UserProfileIn(Model):
    userId: Optional[str] = None
    email: EmailStr
    fullName: str = Field(..., min_length=1, max_length=50)
    username: str = Field(..., min_length=3, max_length=30)
    profilePicture: ProfilePicture
    bio: Optional[str] = Field(None, max_length=500)
    gender: Gender
    phoneNumber: str = Field(..., pattern=PHONE_PATTERN)
    country: str = Field(..., min_length=1)
    socialMediaLinks: SocialMediaLinks = Field(default_factory=SocialMediaLinks)
    identityCardType: Optional[IdentityCardType] = None
    identityCardNumber: Optional[str] = Field(None, min_length=6, max_length=20)
    role: UserRole
    verified: bool = False

    @field_validator("email")
    @classmethod
    def lower_email(cls, v):
        return v.lower()


class UserProfileUpdate(Model):
    fullName: Optional[str] = Field(None, min_length=1, max_length=50)
    username: Optional[str] = Field(None, min_length=3, max_length=30)
    profilePicture: Optional[ProfilePicture] = None
    bio: Optional[str] = Field(None, max_length=500)
    gender: Optional[Gender] = None
    phoneNumber: Optional[str] = Field(None, pattern=PHONE_PATTERN)
    country: Optional[str] = Field(None, min_length=1)
    socialMediaLinks: Optional[SocialMediaLinks] = None
    identityCardType: Optional[IdentityCardType] = None
    identityCardNumber: Optional[str] = Field(None, min_length=6, max_length=20)
    role: Optional[UserRole] = None


# --- Farm profile ---

class FarmLocation(Model):
    region: str = Field(..., min_length=5, max_length=200)
    district: str = Field(..., min_length=5, max_length=200)


class FarmImage(Model):
    url: str
    fileName: str = Field(..., min_length=1, max_length=255)


class FarmProfileIn(Model):
    farmName: str = Field(..., min_length=2, max_length=100)
    farmLocation: FarmLocation
    nearbyLandmarks: List[str] = []
    gpsAddress: Optional[str] = Field(None, max_length=200)
    farmSize: float = Field(..., ge=0, le=10000)
    productionScale: ProductionScale
    farmImages: List[FarmImage] = []
    ownershipStatus: OwnershipStatus
    fullName: str = Field(..., min_length=2, max_length=50)
    contactPhone: str = Field(..., pattern=PHONE_PATTERN)
    contactEmail: Optional[EmailStr] = None
    farmType: FarmType
    cropsGrown: List[str] = []
    livestockProduced: List[str] = []
    mixedCropsGrown: List[str] = []
    aquacultureType: List[str] = []
    nurseryType: List[str] = []
    poultryType: List[str] = []
    othersType: List[str] = []
    belongsToCooperative: bool
    cooperativeName: Optional[str] = Field(None, max_length=100)
    additionalNotes: Optional[str] = Field(None, max_length=500)

    @field_validator("contactEmail", mode="before")
    @classmethod
    def empty_email_is_none(cls, v):
        return v or None


class FarmProfileUpdate(Model):
    farmName: Optional[str] = Field(None, min_length=2, max_length=100)
    farmLocation: Optional[FarmLocation] = None
    nearbyLandmarks: Optional[List[str]] = None
    gpsAddress: Optional[str] = Field(None, max_length=200)
    farmSize: Optional[float] = Field(None, ge=0, le=10000)
    productionScale: Optional[ProductionScale] = None
    farmImages: Optional[List[FarmImage]] = None
    ownershipStatus: Optional[OwnershipStatus] = None
    fullName: Optional[str] = Field(None, min_length=2, max_length=50)
    contactPhone: Optional[str] = Field(None, pattern=PHONE_PATTERN)
    contactEmail: Optional[EmailStr] = None
    farmType: Optional[FarmType] = None
    belongsToCooperative: Optional[bool] = None
    cooperativeName: Optional[str] = Field(None, max_length=100)
    additionalNotes: Optional[str] = Field(None, max_length=500)


class ArrayUpdate(Model):
    field: str
    operation: Literal["add", "remove", "update"]
    value: Optional[str] = None
    index: Optional[int] = None


class FarmProfilePut(Model):
    basicInfo: Optional[FarmProfileUpdate] = None
    arrayUpdates: List[ArrayUpdate] = []


# --- Store profile ---

class StoreBranch(Model):
    branchName: str = Field(..., min_length=2, max_length=100)
    branchLocation: str = Field(..., min_length=5, max_length=200)
    gpsAddress: Optional[str] = Field(None, max_length=200)
    branchPhone: str = Field(..., pattern=PHONE_PATTERN)
    branchEmail: Optional[EmailStr] = None


class StoreImage(Model):
    url: str
    itemName: str = Field(..., min_length=1, max_length=100)
    itemPrice: str = Field(..., min_length=1, max_length=100)
    available: bool = True
    currency: Optional[str] = None


class StoreInfo(Model):
    storeName: Optional[str] = Field(None, min_length=2, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    StoreOwnerShip: Optional[str] = None
    productionScale: Optional[ProductionScale] = None
    productSold: Optional[List[str]] = None
    belongsToGroup: Optional[bool] = None
    groupName: Optional[str] = Field(None, max_length=100)


class StoreProfileIn(Model):
    storeName: str = Field(..., min_length=2, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    branches: List[StoreBranch] = []
    productionScale: ProductionScale
    StoreOwnerShip: Optional[str] = None
    storeImages: List[StoreImage] = []
    productSold: List[str] = []
    belongsToGroup: bool
    groupName: Optional[str] = Field(None, max_length=100)


StoreOperation = Literal[
    "addBranch", "updateBranch", "deleteBranch", "addImage", "updateImage", "deleteImage", "updateStoreInfo"
]


class StoreProfilePut(Model):
    operation: StoreOperation
    branchId: Optional[str] = None
    imageId: Optional[str] = None
    branches: Optional[StoreBranch] = None
    storeImages: Optional[StoreImage] = None
    storeInfo: Optional[StoreInfo] = None


# --- Posts ---

class PostFarmProfile(Model):
    farmName: str
    farmLocation: Location
    farmSize: str
    gpsAddress: str
    productionScale: ProductionScale


class FarmProduct(Model):
    nameOfProduct: str
    pricingMethod: str
    productPrice: Optional[float] = None
    requestPricingDetails: bool
    baseStartingPrice: bool
    currency: str
    pricePerUnit: Optional[float] = None
    availableQuantity: Optional[str] = None
    unit: Optional[str] = None
    availabilityStatus: bool
    awaitingHarvest: bool
    dateHarvested: Optional[str] = None
    quality_grade: Optional[str] = None
    negotiablePrice: bool
    bulk_discount: Optional[str] = None
    discount: bool
    description: str


class Delivery(Model):
    deliveryAvailable: Optional[bool] = None
    deliveryRequirement: Optional[str] = None
    delivery_cost: Optional[str] = None


class FarmPostIn(Model):
    FarmProfile: PostFarmProfile
    tags: List[Tag] = []
    product: FarmProduct
    postLocation: Optional[OptionalLocation] = None
    productImages: List[ImageRef] = []
    useFarmLocation: bool
    category: CategoryRef
    subcategory: CategoryRef
    deliveryAvailable: bool
    delivery: Optional[Delivery] = None


class FarmPostUpdate(Model):
    FarmProfile: Optional[PostFarmProfile] = None
    tags: Optional[List[Tag]] = None
    product: Optional[FarmProduct] = None
    postLocation: Optional[OptionalLocation] = None
    productImages: Optional[List[ImageRef]] = None
    useFarmLocation: Optional[bool] = None
    category: Optional[CategoryRef] = None
    subcategory: Optional[CategoryRef] = None
    deliveryAvailable: Optional[bool] = None
    delivery: Optional[Delivery] = None


class StoreProduct(Model):
    rentOptions: bool
    rentPricing: Optional[float] = None
    rentUnit: Optional[str] = None
    negotiable: bool
    discount: bool
    bulk_discount: Optional[str] = None
    rentInfo: Optional[str] = None


class PostStoreImage(Model):
    id: str = Field(..., alias="_id")
    url: str
    available: bool
    itemName: str
    itemPrice: str
    currency: Optional[str] = None

    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore", populate_by_name=True)


class StorePostIn(Model):
    storeLocation: Location
    product: StoreProduct
    storeImage: PostStoreImage
    delivery: Optional[Delivery] = None
    category: CategoryRef
    subcategory: CategoryRef
    description: str = Field(..., min_length=1)
    GPSLocation: Optional[str] = None
    condition: Optional[str] = None
    tags: List[Tag] = []
    ProductSubImages: List[ImageRef] = []


class StorePostUpdate(Model):
    storeLocation: Optional[Location] = None
    product: Optional[StoreProduct] = None
    storeImage: Optional[PostStoreImage] = None
    delivery: Optional[Delivery] = None
    category: Optional[CategoryRef] = None
    subcategory: Optional[CategoryRef] = None
    description: Optional[str] = Field(None, min_length=1)
    GPSLocation: Optional[str] = None
    condition: Optional[str] = None
    tags: Optional[List[Tag]] = None
    ProductSubImages: Optional[List[ImageRef]] = None


# --- Cart ---

class CartItemIn(Model):
    id: str = Field(..., min_length=1)
    type: str = Field(..., min_length=1)
    quantity: int = Field(..., ge=1)
    price: float = Field(..., ge=0)
    title: Optional[str] = None
    imageUrl: Optional[str] = None
    currency: str = "GHS"
    unit: Optional[str] = None


class CartItemUpdate(Model):
    quantity: Optional[int] = None
    price: Optional[float] = Field(None, ge=0)
    title: Optional[str] = None
    imageUrl: Optional[str] = None
    currency: Optional[str] = None
    unit: Optional[str] = None


# --- Reviews ---

class ReviewIn(Model):
    recipientId: str = Field(..., min_length=1)
    rating: int = Field(..., ge=1, le=5)
    content: str = Field(..., min_length=1, max_length=500)
    role: UserRole


class ReviewUpdate(Model):
    rating: Optional[int] = Field(None, ge=1, le=5)
    content: Optional[str] = Field(None, max_length=500)
